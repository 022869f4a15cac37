"""
Offshore Buoy Extremes Analysis Framework.

Batch statistical analysis of hourly observations from a network of offshore
weather buoys: rogue wave and rogue gust detection, seasonal-trend
decomposition, extreme value modelling (GEV block maxima and GPD peaks over
threshold with declustering) and a random forest wave-height model.
"""

__version__ = "0.1.0"
