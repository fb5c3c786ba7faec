"""Calendar grid scale and visual constants."""

# Vertical scale shared by the layout engine and the renderer
PIXELS_PER_HOUR: float = 45.0
PIXELS_PER_MINUTE: float = PIXELS_PER_HOUR / 60  # 0.75px per minute
MIN_EVENT_HEIGHT: float = 15.0

# Layout constants
HEADER_HEIGHT: int = 60
TIME_GUTTER_WIDTH: int = 50
PADDING: int = 4
EVENT_PADDING: int = 2
CORNER_RADIUS: int = 4

# Font sizes
DEFAULT_FONT_SIZE: int = 14
DEFAULT_EVENT_FONT_SIZE: int = 11
HOUR_LABEL_FONT_SIZE: int = 10

# Text length limits
MAX_TITLE_LENGTH: int = 25

FONT_NAME: str = "DejaVuSans.ttf"

GRID_LINE_COLOR: str = '#cccccc'
HEADER_FILL: str = '#f7f7f7'
TODAY_HEADER_FILL: str = '#666666'
