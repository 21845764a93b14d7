
# Friendly labels for the UI, you can change these (right hand side) as you like
LABELS = {
    "P.Electricity": "Total electricity (GWh)",
    "P.Coal, Peat and Manufactured Gases": "Coal, peat and manufactured gases",
    "P.Combustible Renewables": "Combustible renewables",
    "P.Geothermal": "Geothermal",
    "P.Hydro": "Hydro",
    "P.Nuclear": "Nuclear",
    "P.Oil and Petroleum Products": "Oil and petroleum products",
    "P.Other Renewables": "Other renewables",
    "P.Solar": "Solar",
    "P.Wind": "Wind",
    "P.Natural Gas": "Natural gas",
}

# The category the map colours by and the ranking bars sort by
RANKING_CATEGORY = "P.Electricity"
UNIT_LABEL = "GWh"

# Slices of the production pie, drawn in this order
BREAKDOWN_CATEGORIES = (
    "P.Coal, Peat and Manufactured Gases",
    "P.Combustible Renewables",
    "P.Geothermal",
    "P.Hydro",
    "P.Nuclear",
    "P.Oil and Petroleum Products",
    "P.Other Renewables",
    "P.Solar",
    "P.Wind",
    "P.Natural Gas",
)

# Everything the dataset is allowed to contain. Rows with other products are
# kept but flagged, so add new products here once you trust them.
CATEGORY_VOCABULARY = frozenset(
    BREAKDOWN_CATEGORIES
    + (
        RANKING_CATEGORY,
        "P.Total Combustible Fuels",
        "P.Total Renewables (Hydro, Geo, Solar, Wind, Other)",
        "P.Low carbon",
        "P.Non-renewables",
        "P.Others",
    )
)

# Only index one balance (e.g. "Consumption"). None keeps every row, and where
# a country reports a product under several balances the map and ranking
# show the last such row in the file (the index logs a warning).
INDEX_BALANCE = None

# ----- Ranking bars -----
RANKING_SIZE = 20
# The lowest-consumption list leaves out this many countries from the bottom.
# The bottom entry is usually an incomplete report; set to 0 to keep it.
RANKING_ASCENDING_SKIP = 1

# ----- Map colours -----
# Threshold scale: values below THRESHOLDS[0] get COLORS[0], values in
# [THRESHOLDS[i-1], THRESHOLDS[i]) get COLORS[i], anything above the last
# threshold gets the last colour.
THRESHOLDS = (0, 1000, 8000, 60000, 160000, 320000, 480000, 560000, 640000, 720000, 800000)
COLORS = (
    "#595957", "#4A6865", "#3A7773", "#327F7B", "#2B8682", "#238E89",
    "#238689", "#237F8A", "#23708B", "#23618C", "#24598C", "#24598C",
)
BACKGROUND = "#f9f7e8"

# ----- Map projection and zoom -----
MAP_PROJECTION = "mercator"  # Try: "equirectangular"
MAP_WIDTH, MAP_HEIGHT = 960, 560
INITIAL_TRANSFORM = {
    "scale_x": 1.27,
    "scale_y": 1.27,
    "translate_x": -211.62,
    "translate_y": 162.59,
    "skew_x": 0.0,
    "skew_y": 0.0,
}
SCALE_MIN, SCALE_MAX = 0.5, 4.0
ZOOM_STEP = 1.1
PAN_STEP = 60  # pixels per pan button press
# "screen" moves the map by exactly the pointer delta, "scaled" divides it by the zoom
DRAG_DELTA = "screen"

# ================== END DASHBOARD SETTINGS =====================
