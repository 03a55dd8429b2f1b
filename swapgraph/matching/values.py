"""Asset valuation used by the graph builder and the scorer."""

from typing import Dict, List, Optional

from swapgraph.core.models import Asset


AssetValues = Dict[str, float]


def asset_value(asset: Asset, asset_values: Optional[AssetValues] = None) -> Optional[float]:
    """Request-supplied value wins over the asset's own estimate."""
    if asset_values and asset.asset_id in asset_values:
        return float(asset_values[asset.asset_id])
    if asset.value is None:
        return None
    return float(asset.value)


def value_of_assets(assets: List[Asset], asset_values: Optional[AssetValues] = None) -> Optional[float]:
    """Sum of asset values, or None when any asset has no known value."""
    total = 0.0
    for asset in assets:
        value = asset_value(asset, asset_values)
        if value is None:
            return None
        total += value
    return round(total, 6)


def missing_values(assets: List[Asset], asset_values: Optional[AssetValues] = None) -> List[str]:
    return sorted({a.asset_id for a in assets if asset_value(a, asset_values) is None})
