"""
Tabular and GeoJSON views of a load cycle's output.

The engine itself only hands out in-memory objects; these helpers are used by
the CLI to write the feature table (CSV) and the centroids (GeoJSON).
"""

from dataclasses import asdict, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Union

import geopandas as gpd
import pandas as pd
from loguru import logger

from .geometry import Point
from .records import FeatureRecord

SKIPPED_NESTED_FIELDS = {"code", "name"}


def _flatten(prefix: str, value: Any, row: Dict[str, Any]) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            _flatten(f"{prefix}_{key}", item, row)
    else:
        row[prefix] = value


def feature_record_to_row(record: FeatureRecord) -> Dict[str, Any]:
    """Flat dict for one municipality: nested records become ``category_field`` columns."""
    row: Dict[str, Any] = {"code": record.code, "name": record.name}
    for f in fields(record):
        if f.name in SKIPPED_NESTED_FIELDS:
            continue
        value = getattr(record, f.name)
        if value is None:
            continue
        if is_dataclass(value):
            for key, item in asdict(value).items():
                if key not in SKIPPED_NESTED_FIELDS:
                    _flatten(f"{f.name}_{key}", item, row)
        else:
            row[f.name] = value
    return row


def feature_table_to_dataframe(feature_table: Mapping[str, FeatureRecord]) -> pd.DataFrame:
    """Feature table as a DataFrame indexed by municipality code.

    Missing values stay NaN/None: absence is never filled with zero.
    """
    rows = [feature_record_to_row(feature_table[code]) for code in sorted(feature_table)]
    if not rows:
        return pd.DataFrame(columns=["name"]).rename_axis("code")
    return pd.DataFrame(rows).set_index("code")


def centroids_to_geodataframe(centroids: Mapping[str, Point]) -> gpd.GeoDataFrame:
    """Centroids as a WGS84 point GeoDataFrame with a ``code`` column."""
    codes = sorted(centroids)
    return gpd.GeoDataFrame(
        {"code": codes},
        geometry=gpd.points_from_xy(
            [centroids[c].lon for c in codes],
            [centroids[c].lat for c in codes],
        ),
        crs="EPSG:4326",
    )


def ensure_output_directory(output_path: Union[str, Path]) -> Path:
    """Ensure output directory exists and return Path object."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    return output_path


def export_feature_table_csv(feature_table: Mapping[str, FeatureRecord], output_path: Union[str, Path]) -> Path:
    """Write the feature table to CSV."""
    output_path = ensure_output_directory(output_path)
    logger.info(f"💾 Exporting feature table to {output_path}")
    df = feature_table_to_dataframe(feature_table)
    df.to_csv(output_path, encoding="utf-8")
    logger.success(f"  ✅ Exported {len(df):,} municipalities x {len(df.columns)} columns")
    return output_path


def export_centroids_geojson(centroids: Mapping[str, Point], output_path: Union[str, Path]) -> Path:
    """Write the centroids to a GeoJSON FeatureCollection."""
    output_path = ensure_output_directory(output_path)
    logger.info(f"💾 Exporting centroids to {output_path}")
    gdf = centroids_to_geodataframe(centroids)
    gdf.to_file(output_path, driver="GeoJSON")
    logger.success(f"  ✅ Exported {len(gdf):,} centroids")
    return output_path
