# charts.py

import asyncio
import base64
import io
import logging
import re
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from matplotlib.figure import Figure
from PIL import Image, ImageDraw, ImageFont

from . import config
from .plan import VisualizationSpec
from .results import StageResult, to_frame

logger = logging.getLogger(__name__)

LINESTYLES = {"solid": "-", "dashed": "--", "dotted": ":"}
PIL_FORMATS = {"png": "PNG", "webp": "WEBP", "jpeg": "JPEG"}

_NUM_JUNK = re.compile(r"[$,\s%]")


# =========================
# Encoding under a byte budget
# =========================

def _encode(img: Image.Image, fmt: str) -> bytes:
    buf = io.BytesIO()
    if fmt == "png":
        img.save(buf, format="PNG", optimize=True)
    else:
        img.save(buf, format=PIL_FORMATS[fmt], quality=80)
    return buf.getvalue()


def ensure_image_under_limit(pil_img: Image.Image, fmt: str = "png", max_bytes: int = config.MAX_IMAGE_BYTES) -> str:
    pil_img = pil_img.convert("RGB")
    w, h = pil_img.size
    b = b""
    for scale in [1.0, 0.9, 0.8, 0.7, 0.6, 0.5, 0.45, 0.4, 0.3, 0.2]:
        target = pil_img.resize((max(1, int(w * scale)), max(1, int(h * scale))), Image.Resampling.LANCZOS)
        b = _encode(target, fmt)
        if len(b) <= max_bytes:
            break
    return f"data:image/{fmt};base64," + base64.b64encode(b).decode()


def tiny_placeholder_png(text: str = "plot", w: int = 320, h: int = 240) -> str:
    img = Image.new("RGB", (w, h), (255, 255, 255))
    d = ImageDraw.Draw(img)
    d.text((10, 10), text, fill=(0, 0, 0), font=ImageFont.load_default())
    return ensure_image_under_limit(img, "png")


# =========================
# Data extraction
# =========================

def _normalize_colname(c: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", str(c).lower())


def find_column(df: pd.DataFrame, name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    want = _normalize_colname(name)
    for c in df.columns:
        if _normalize_colname(c) == want:
            return c
    for c in df.columns:
        if want and want in _normalize_colname(c):
            return c
    return None


def clean_numeric(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series.map(lambda v: _NUM_JUNK.sub("", str(v)) if v is not None else v), errors="coerce")


def _axes(df: pd.DataFrame, spec: VisualizationSpec) -> Tuple[Optional[str], Optional[str]]:
    cols = list(df.columns)
    x = find_column(df, spec.x_axis) if spec.x_axis else (cols[0] if cols else None)
    y = find_column(df, spec.y_axis) if spec.y_axis else (cols[1] if len(cols) > 1 else None)
    return x, y


def extract_points(data: StageResult, spec: VisualizationSpec) -> Tuple[np.ndarray, np.ndarray, str, str]:
    df = to_frame(data)
    empty = np.array([]), np.array([])
    if df is None or df.empty:
        return (*empty, spec.x_axis or "x", spec.y_axis or "y")
    x, y = _axes(df, spec)
    if x is None or y is None:
        logger.warning(f"Column not found. Available columns: {', '.join(map(str, df.columns))}")
        return (*empty, spec.x_axis or "x", spec.y_axis or "y")
    xs, ys = clean_numeric(df[x]).values, clean_numeric(df[y]).values
    m = (~np.isnan(xs)) & (~np.isnan(ys))
    return xs[m], ys[m], str(x), str(y)


# =========================
# Rendering
# =========================

def _draw(fig: Figure, data: StageResult, spec: VisualizationSpec) -> None:
    ax = fig.subplots()
    t = spec.chart_type

    if t == "heatmap":
        df = to_frame(data)
        num = df.apply(clean_numeric).dropna(axis=1, how="all") if df is not None else None
        if num is None or num.shape[1] < 2:
            ax.text(0.5, 0.5, "No data available", ha="center")
            return
        corr = num.corr().values
        im = ax.imshow(corr, cmap="viridis", vmin=-1, vmax=1)
        ax.set_xticks(range(num.shape[1]), [str(c) for c in num.columns], rotation=45, ha="right")
        ax.set_yticks(range(num.shape[1]), [str(c) for c in num.columns])
        fig.colorbar(im, ax=ax)
        ax.set_title(spec.title or "Correlation heatmap")
        return

    x, y, xlab, ylab = extract_points(data, spec)
    if len(x) == 0:
        ax.text(0.5, 0.5, "No data available", ha="center")
        return

    if t == "scatter":
        ax.scatter(x, y, alpha=0.7)
    elif t == "line":
        order = np.argsort(x)
        ax.plot(x[order], y[order], marker="o")
    elif t == "bar":
        ax.bar(x, y)
    elif t == "pie":
        ax.pie(np.clip(y, 0, None), labels=[f"{v:g}" for v in x])
    elif t == "histogram":
        ax.hist(x, bins=20)

    if spec.show_regression and t in ("scatter", "line") and len(x) > 1 and np.ptp(x) > 0:
        m1, c1 = np.polyfit(x, y, 1)
        xx = np.linspace(np.min(x), np.max(x), 200)
        ax.plot(xx, m1 * xx + c1, linestyle=LINESTYLES[spec.regression_style],
                color=spec.regression_color or "red", linewidth=2)

    if t != "pie":
        ax.set_xlabel(xlab)
        ax.set_ylabel(ylab if t != "histogram" else "count")
        ax.grid(True, alpha=0.3)
    ax.set_title(spec.title or f"{ylab} vs {xlab}")


def render_sync(data: StageResult, spec: VisualizationSpec, max_bytes: int = config.MAX_IMAGE_BYTES) -> str:
    fig = Figure(figsize=(spec.width / 100, spec.height / 100), dpi=100)
    _draw(fig, data, spec)
    buf = io.BytesIO()
    fig.savefig(buf, format="png", bbox_inches="tight")
    pil = Image.open(io.BytesIO(buf.getvalue()))
    return ensure_image_under_limit(pil, spec.format, max_bytes)


class ChartRenderer:
    def __init__(self, max_bytes: int = config.MAX_IMAGE_BYTES):
        self.max_bytes = max_bytes

    async def render(self, data: StageResult, spec: VisualizationSpec) -> str:
        """Render a chart as a data URI. Falls back to a placeholder image, never raises."""
        logger.info(f"Creating visualization: {spec.chart_type}")
        try:
            return await asyncio.to_thread(render_sync, data, spec, self.max_bytes)
        except Exception as e:
            logger.exception(f"Error creating visualization: {e}")
            return tiny_placeholder_png("auto-generated plot")
