"""Shared primitives: models, errors, canonical encoding, signing, journal, config."""
