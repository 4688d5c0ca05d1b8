"""FX rates: as-of lookup, conversion and the daily refresh."""

from landedcost.fx.converter import HUB_CURRENCIES, FxConverter
from landedcost.fx.refresh import FxRefreshResult, refresh_fx

__all__ = ["FxConverter", "HUB_CURRENCIES", "FxRefreshResult", "refresh_fx"]
