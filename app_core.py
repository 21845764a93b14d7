# app_core.py
# Energy Consumption World Map: choropleth + ranking bars + country breakdown/history

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import plotly.graph_objects as go
from dash import Dash, dcc, html, Input, Output, State, exceptions, ctx

import dashboard_hook as SH
from energy_index import (
    Direction,
    build_index,
    category_breakdown,
    chronological_dates,
    country_slice,
    history_frame,
    top_n,
)
from geo_projection import (
    feature_at,
    feature_ids_by_name,
    graticule,
    load_features,
    project_features,
    project_lines,
    viewport_projection,
)
from prepare_energy_dataset import BalanceDirection, load_records
from zoom_controller import TransformController, config_from_settings

logger = logging.getLogger("energymap.app")

APP_TITLE = "Energy Consumption World Map"
DATA_PATH = Path(os.getenv("ENERGY_DATA_PATH", "energy_data.csv"))
TOPOLOGY_PATH = Path(os.getenv("ENERGY_TOPOLOGY_PATH", "world-topo.json"))


# -----------------------------
# Settings
# -----------------------------

@dataclass
class MapSettings:
    """Everything the figures need, read once from the settings module."""
    labels: dict = field(default_factory=dict)
    ranking_category: str = "P.Electricity"
    unit: str = "GWh"
    breakdown_categories: tuple = ()
    ranking_size: int = 20
    ascending_skip: int = 1
    thresholds: tuple = ()
    colors: tuple = ("#595957",)
    background: str = "#f9f7e8"
    projection: str = "mercator"
    zoom_step: float = 1.1
    pan_step: float = 60

    def label(self, category):
        return self.labels.get(category, category.removeprefix("P."))


def settings_from_hook(SH_module):
    return MapSettings(
        labels=dict(getattr(SH_module, "LABELS", {})),
        ranking_category=getattr(SH_module, "RANKING_CATEGORY", "P.Electricity"),
        unit=getattr(SH_module, "UNIT_LABEL", "GWh"),
        breakdown_categories=tuple(getattr(SH_module, "BREAKDOWN_CATEGORIES", ())),
        ranking_size=int(getattr(SH_module, "RANKING_SIZE", 20)),
        ascending_skip=int(getattr(SH_module, "RANKING_ASCENDING_SKIP", 1)),
        thresholds=tuple(getattr(SH_module, "THRESHOLDS", ())),
        colors=tuple(getattr(SH_module, "COLORS", ("#595957",))),
        background=getattr(SH_module, "BACKGROUND", "#f9f7e8"),
        projection=getattr(SH_module, "MAP_PROJECTION", "mercator"),
        zoom_step=float(getattr(SH_module, "ZOOM_STEP", 1.1)),
        pan_step=float(getattr(SH_module, "PAN_STEP", 60)),
    )


# -----------------------------
# Helpers
# -----------------------------

def threshold_color(value, thresholds, colors):
    """Colour of the first bin whose upper threshold is above ``value``."""
    for i, t in enumerate(thresholds):
        if value < t:
            return colors[min(i, len(colors) - 1)]
    return colors[min(len(thresholds), len(colors) - 1)]


def threshold_legend_items(thresholds, colors):
    """(colour, label) pairs, highest bin first."""
    items = [(threshold_color(thresholds[0] - 1, thresholds, colors), f"Less than {thresholds[0]:,}")]
    for lo, hi in zip(thresholds, thresholds[1:]):
        items.append((threshold_color(lo, thresholds, colors), f"{lo:,} to {hi:,}"))
    items.append((threshold_color(thresholds[-1], thresholds, colors), f"More than {thresholds[-1]:,}"))
    return items[::-1]


def _flatten_rings(rings, controller):
    """Rings as one x/y sequence with None gaps, through the user transform."""
    xs, ys = [], []
    for ring in rings:
        pts = controller.apply_many(ring)
        xs.extend(pts[:, 0].tolist() + [None])
        ys.extend(pts[:, 1].tolist() + [None])
    return xs, ys


def _empty_fig(msg):
    fig = go.Figure()
    fig.add_annotation(text=msg, showarrow=False, xref="paper", yref="paper", x=0.5, y=0.5)
    fig.update_layout(
        xaxis=dict(visible=False),
        yaxis=dict(visible=False),
        margin=dict(l=40, r=20, t=40, b=40),
    )
    return fig


# -----------------------------
# Figure builders
# -----------------------------

def build_map_figure(index, date, projected, grid, controller, settings):
    """
    One filled trace per country, after the user transform. Trace 0 is the
    graticule, trace i + 1 is projected[i].
    """
    countries = index.countries(date)
    cfg = controller.config
    fig = go.Figure()

    gx, gy = _flatten_rings(grid, controller)
    fig.add_trace(go.Scatter(
        x=gx, y=gy, mode="lines", hoverinfo="skip", showlegend=False,
        line=dict(color="rgba(33,33,33,0.05)", width=1),
    ))

    for pf in projected:
        value = countries.get(pf.name, {}).get(settings.ranking_category, 0)
        xs, ys = _flatten_rings(pf.rings, controller)
        fig.add_trace(go.Scatter(
            x=xs, y=ys, mode="lines", fill="toself", hoveron="fills",
            fillcolor=threshold_color(value, settings.thresholds, settings.colors),
            line=dict(color=settings.background, width=0.5),
            name=pf.name, text=f"{pf.name}: {value:,.0f} {settings.unit}",
            hoverinfo="text", showlegend=False,
        ))

    fig.update_layout(
        plot_bgcolor=settings.background,
        paper_bgcolor=settings.background,
        margin=dict(l=0, r=0, t=0, b=0),
        dragmode=False,
        xaxis=dict(visible=False, range=[0, cfg.width], fixedrange=True),
        yaxis=dict(visible=False, range=[cfg.height, 0], fixedrange=True, scaleanchor="x"),
    )
    return fig


def build_ranking_figure(entries, ids_by_name, direction, settings):
    if not entries:
        return _empty_fig("No data reported")
    labels = [ids_by_name.get(e.country, e.country) for e in entries]
    fig = go.Figure(go.Bar(
        x=[e.value for e in entries],
        y=labels,
        orientation="h",
        marker_color="#28A29C",
        customdata=[e.country for e in entries],
        hovertemplate=f"%{{customdata}}<br>%{{x:,.0f}} {settings.unit}<extra></extra>",
    ))
    fig.update_layout(
        title="Highest Consumption" if direction is Direction.DESCENDING else "Lowest Consumption",
        yaxis=dict(autorange="reversed", type="category"),
        margin=dict(l=50, r=20, t=40, b=20),
        plot_bgcolor="#FFFFFF",
    )
    return fig


def build_breakdown_figure(shares, settings):
    if not shares:
        return _empty_fig("No data reported")
    text = [
        f"{s.value:,.0f}{settings.unit}" + (f" ({s.share:.2f}%)" if s.share is not None else "")
        for s in shares
    ]
    fig = go.Figure(go.Pie(
        labels=[settings.label(s.category) for s in shares],
        values=[s.value for s in shares],
        text=text,
        hole=0.35,
        sort=False,
        textinfo="label",
        hovertemplate="%{label}<br>%{text}<extra></extra>",
    ))
    fig.update_layout(margin=dict(l=20, r=20, t=20, b=20))
    return fig


def build_history_figure(frame, country, settings):
    if frame.empty:
        return _empty_fig(f"No history for {country}")
    fig = go.Figure(go.Scatter(
        x=frame["timestamp"],
        y=frame["value"],
        mode="lines+markers",
        name=country,
        hovertemplate=f"{country}<br>%{{x}}<br>%{{y:,.0f}} {settings.unit}<extra></extra>",
    ))
    fig.update_layout(
        xaxis=dict(type="category", title="Month"),
        yaxis_title=f"{settings.label(settings.ranking_category)}",
        margin=dict(l=40, r=20, t=20, b=40),
        hovermode="x unified",
    )
    return fig


def total_text(index, date, country, settings):
    total = country_slice(index, date, country).get(settings.ranking_category)
    if total is None:
        return "Total Consumption: No data reported"
    return f"Total Consumption: {total:,.0f}{settings.unit}"


def resolve_click(click_data, projected, controller):
    """Country name under a map click, or None."""
    if not click_data or not isinstance(click_data, dict):
        return None
    points = click_data.get("points") or []
    if not points:
        return None
    point = points[0]
    # Trace 0 is the graticule; trace i + 1 is projected[i]
    curve = point.get("curveNumber")
    if isinstance(curve, int) and 1 <= curve <= len(projected):
        return projected[curve - 1].name
    if point.get("x") is not None and point.get("y") is not None:
        hit = feature_at(projected, controller.invert((point["x"], point["y"])))
        if hit is not None:
            return hit.name
    return None


# -----------------------------
# App
# -----------------------------

def create_app(index, features, settings=None, zoom_config=None):
    settings = settings or settings_from_hook(SH)
    zoom_config = zoom_config or config_from_settings(SH)

    projection = viewport_projection(zoom_config.width, zoom_config.height, kind=settings.projection)
    projected = project_features(features, projection)
    grid = project_lines(graticule(), projection)
    ids_by_name = feature_ids_by_name(features)

    dates = chronological_dates(index)
    default_date = dates[-1] if dates else None
    initial_transform = TransformController(zoom_config).to_dict()

    app = Dash(__name__, title=APP_TITLE)

    legend = html.Div([
        html.Div([
            html.Span(style={"display": "inline-block", "width": "15px", "height": "15px",
                             "background": color, "marginRight": "10px"}),
            html.Span(label),
        ], style={"margin": "1px 0"})
        for color, label in threshold_legend_items(settings.thresholds, settings.colors)
    ]) if settings.thresholds else html.Div()

    button_style = {"marginRight": "4px"}
    app.layout = html.Div(
        style={"fontFamily": "system-ui, -apple-system, Segoe UI, Roboto, Helvetica, Arial",
               "padding": "16px", "margin": "0 auto"},
        children=[
            html.H2(id="map-title", style={"textAlign": "center"}),
            html.Div(
                style={"display": "grid", "gridTemplateColumns": "1fr 3fr", "gap": "16px"},
                children=[
                    html.Div([
                        html.Label("Sort"),
                        dcc.RadioItems(
                            id="orden",
                            options=[{"label": " Highest Consumption", "value": Direction.DESCENDING.value},
                                     {"label": " Lowest Consumption", "value": Direction.ASCENDING.value}],
                            value=Direction.DESCENDING.value,
                        ),
                        dcc.Graph(id="ranking", config={"displaylogo": False}, style={"height": "60vh"}),
                        html.H4(f"Consumption Range ({settings.unit})"),
                        legend,
                    ]),
                    html.Div([
                        html.Div(
                            style={"display": "flex", "gap": "10px", "alignItems": "center",
                                   "margin": "6px 0 12px"},
                            children=[
                                html.Label("Selected Date: "),
                                dcc.Dropdown(
                                    id="date",
                                    options=[{"label": d, "value": d} for d in dates],
                                    value=default_date,
                                    clearable=False,
                                    style={"width": "220px"},
                                ),
                                html.Button("+", id="btn-zoom-in", n_clicks=0, style=button_style),
                                html.Button("−", id="btn-zoom-out", n_clicks=0, style=button_style),
                                html.Button("←", id="btn-pan-left", n_clicks=0, style=button_style),
                                html.Button("→", id="btn-pan-right", n_clicks=0, style=button_style),
                                html.Button("↑", id="btn-pan-up", n_clicks=0, style=button_style),
                                html.Button("↓", id="btn-pan-down", n_clicks=0, style=button_style),
                                html.Button("Reset", id="btn-reset", n_clicks=0, style=button_style),
                            ],
                        ),
                        dcc.Graph(
                            id="world_map",
                            config={"displaylogo": False, "displayModeBar": False, "scrollZoom": False},
                            style={"height": f"{zoom_config.height}px"},
                        ),
                    ]),
                ],
            ),
            html.Div(id="detail", style={"display": "none"}, children=[
                html.Hr(),
                html.H2(id="detail-title", style={"textAlign": "center"}),
                html.H4("Distribution of Total Energy Consumed", style={"textAlign": "center"}),
                html.P(id="detail-total", style={"textAlign": "center"}),
                dcc.Graph(id="breakdown", config={"displaylogo": False}),
                html.H4("History Total Energy Consumption", style={"textAlign": "center"}),
                dcc.Graph(id="history", config={"displaylogo": False}),
            ]),
            dcc.Store(id="transform-store", data=initial_transform),
            dcc.Store(id="selected-country"),
        ],
    )

    pan_moves = {
        "btn-pan-left": (settings.pan_step, 0),
        "btn-pan-right": (-settings.pan_step, 0),
        "btn-pan-up": (0, settings.pan_step),
        "btn-pan-down": (0, -settings.pan_step),
    }

    @app.callback(
        Output("transform-store", "data"),
        Input("btn-zoom-in", "n_clicks"),
        Input("btn-zoom-out", "n_clicks"),
        Input("btn-reset", "n_clicks"),
        *(Input(b, "n_clicks") for b in pan_moves),
        State("transform-store", "data"),
        prevent_initial_call=True,
    )
    def update_transform(*args):
        controller = TransformController.from_dict(zoom_config, args[-1])
        action = ctx.triggered_id
        if action == "btn-zoom-in":
            controller.zoom(settings.zoom_step)
        elif action == "btn-zoom-out":
            controller.zoom(1 / settings.zoom_step)
        elif action == "btn-reset":
            controller.reset()
        elif action in pan_moves:
            # a button press is a drag from the centre by one pan step
            cx, cy = zoom_config.center
            dx, dy = pan_moves[action]
            controller.pointer_down((cx, cy))
            controller.pointer_move((cx + dx, cy + dy))
            controller.pointer_up()
        else:
            raise exceptions.PreventUpdate
        return controller.to_dict()

    @app.callback(
        Output("world_map", "figure"),
        Output("map-title", "children"),
        Input("date", "value"),
        Input("transform-store", "data"),
    )
    def update_map(date, transform):
        controller = TransformController.from_dict(zoom_config, transform)
        if not date:
            return _empty_fig("No data"), "Electricity Total Consumption"
        fig = build_map_figure(index, date, projected, grid, controller, settings)
        return fig, f"Electricity Total Consumption on {date}"

    @app.callback(
        Output("ranking", "figure"),
        Input("date", "value"),
        Input("orden", "value"),
    )
    def update_ranking(date, orden):
        direction = Direction(orden or Direction.DESCENDING.value)
        entries = top_n(
            index, date or "", settings.ranking_size, direction,
            category=settings.ranking_category, ascending_skip=settings.ascending_skip,
        )
        return build_ranking_figure(entries, ids_by_name, direction, settings)

    @app.callback(
        Output("selected-country", "data"),
        Input("world_map", "clickData"),
        State("transform-store", "data"),
        prevent_initial_call=True,
    )
    def select_country(click_data, transform):
        controller = TransformController.from_dict(zoom_config, transform)
        name = resolve_click(click_data, projected, controller)
        if name is None:
            raise exceptions.PreventUpdate
        logger.debug("Selected %s", name)
        return name

    @app.callback(
        Output("detail", "style"),
        Output("detail-title", "children"),
        Output("detail-total", "children"),
        Output("breakdown", "figure"),
        Output("history", "figure"),
        Input("selected-country", "data"),
        Input("date", "value"),
    )
    def update_detail(country, date):
        if not country or not date:
            raise exceptions.PreventUpdate
        total = country_slice(index, date, country).get(settings.ranking_category)
        shares = category_breakdown(index, date, country, settings.breakdown_categories, total=total)
        frame = history_frame(index, country, category=settings.ranking_category)
        return (
            {"display": "block"},
            country,
            total_text(index, date, country, settings),
            build_breakdown_figure(shares, settings),
            build_history_figure(frame, country, settings),
        )

    return app


# -----------------------------
# Run
# -----------------------------

def main():
    logging.basicConfig(
        level=os.getenv("ENERGY_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    records = load_records(DATA_PATH)
    balance_name = os.getenv("ENERGY_BALANCE") or getattr(SH, "INDEX_BALANCE", None)
    balance = BalanceDirection[balance_name.upper()] if balance_name else None
    index = build_index(records, balance=balance)
    features = load_features(TOPOLOGY_PATH)

    app = create_app(index, features)
    print(f"Records: {len(records):,}, months: {len(index)}, countries on map: {len(features)}")
    app.run(debug=os.getenv("ENV", "prod") == "dev")


if __name__ == "__main__":
    main()
