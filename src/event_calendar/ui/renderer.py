"""Calendar rendering and drawing functionality."""

from PIL import Image, ImageColor, ImageDraw, ImageFont
from datetime import date
from typing import Dict, List, Optional, Sequence
import logging

from .styles import (
    HEADER_HEIGHT, TIME_GUTTER_WIDTH, PADDING, EVENT_PADDING, CORNER_RADIUS,
    DEFAULT_FONT_SIZE, DEFAULT_EVENT_FONT_SIZE, HOUR_LABEL_FONT_SIZE,
    MAX_TITLE_LENGTH, FONT_NAME, PIXELS_PER_HOUR, GRID_LINE_COLOR,
    HEADER_FILL, TODAY_HEADER_FILL
)
from ..models import DEFAULT_EVENT_COLOR, CalendarEvent, EventLayout

logger = logging.getLogger(__name__)


class CalendarRenderer:
    """Draws laid-out timed events onto a day-column grid."""

    def __init__(self, today: Optional[date] = None):
        self.today = today or date.today()
        self.header_font = None
        self.event_font = None
        self.hour_font = None
        self._load_fonts()

    def _load_fonts(self) -> None:
        """Load fonts for calendar display with fallback to default."""
        try:
            self.header_font = ImageFont.truetype(FONT_NAME, DEFAULT_FONT_SIZE)
            self.event_font = ImageFont.truetype(FONT_NAME, DEFAULT_EVENT_FONT_SIZE)
            self.hour_font = ImageFont.truetype(FONT_NAME, HOUR_LABEL_FONT_SIZE)
        except OSError as e:
            logger.warning(f"Failed to load custom fonts: {e}. Using default fonts.")
            self.header_font = self.event_font = self.hour_font = ImageFont.load_default()

    def get_font_color(self, background_color: str) -> str:
        """Pick black text for light backgrounds and white text for dark ones."""
        try:
            r, g, b = ImageColor.getrgb(background_color)[:3]
        except ValueError:
            return 'white'
        luminance = 0.299 * r + 0.587 * g + 0.114 * b
        return 'black' if luminance > 160 else 'white'

    def draw_calendar_structure(self, draw: ImageDraw.ImageDraw, days: Sequence[date],
                                x_offset: int, day_width: float, height: int) -> None:
        """Draw the day headers, hour lines and hour labels."""
        for i, day in enumerate(days):
            x = x_offset + i * day_width
            is_today = day == self.today
            header_color = TODAY_HEADER_FILL if is_today else HEADER_FILL
            text_color = 'white' if is_today else 'black'

            draw.rectangle([x, 0, x + day_width, HEADER_HEIGHT], outline='black', fill=header_color)
            draw.text((x + PADDING, PADDING), day.strftime('%a'), fill=text_color, font=self.header_font)
            draw.text((x + PADDING, PADDING + 20), day.strftime('%d'), fill=text_color, font=self.header_font)

        grid_right = x_offset + len(days) * day_width
        for hour in range(25):
            y = HEADER_HEIGHT + hour * PIXELS_PER_HOUR
            if y > height:
                break
            draw.line([x_offset, y, grid_right, y], fill=GRID_LINE_COLOR, width=1)
            if hour < 24:
                draw.text((PADDING, y + 1), f"{hour:02d}:00", fill='black', font=self.hour_font)

        for i in range(len(days) + 1):
            x = x_offset + i * day_width
            draw.line([x, HEADER_HEIGHT, x, height], fill=GRID_LINE_COLOR, width=1)

    def draw_event(self, draw: ImageDraw.ImageDraw, layout: EventLayout,
                   column_x: float, day_width: float) -> None:
        """Draw one event box; edges shared with a touching event are squared off."""
        position = layout.position
        left = column_x + day_width * position.left_percent / 100 + EVENT_PADDING
        right = column_x + day_width * (position.left_percent + position.width_percent) / 100 - EVENT_PADDING
        top = HEADER_HEIGHT + position.top
        bottom = top + position.height
        if right <= left or bottom <= top:
            return

        round_top = not layout.touching_top
        round_bottom = not layout.touching_bottom
        color = self.get_fill_color(layout.event)
        draw.rounded_rectangle(
            [left, top, right, bottom],
            radius=CORNER_RADIUS,
            fill=color,
            outline='black',
            corners=(round_top, round_top, round_bottom, round_bottom)
        )

        title = self.get_title(layout.event)
        if position.height >= DEFAULT_EVENT_FONT_SIZE:
            draw.text((left + EVENT_PADDING, top + 1), title,
                      fill=self.get_font_color(color), font=self.event_font)

    def get_fill_color(self, event: CalendarEvent) -> str:
        """Event color if Pillow understands it, else the default blue."""
        try:
            ImageColor.getrgb(event.color)
        except ValueError:
            return DEFAULT_EVENT_COLOR
        return event.color

    def get_title(self, event: CalendarEvent) -> str:
        time_str = event.start.strftime('%H:%M')
        return f"{time_str} {event.title[:MAX_TITLE_LENGTH]}"

    def render(self, days: Sequence[date], layouts: Dict[date, List[EventLayout]],
               width: int, height: int) -> Image.Image:
        """
        Render the timed events of ``days`` side by side.

        Args:
            days: Days to show, one column each
            layouts: EventLayouts per day, as produced by ``layout_day``
            width: Image width in pixels
            height: Image height in pixels

        Returns:
            RGB image
        """
        image = Image.new('RGB', (width, height), 'white')
        draw = ImageDraw.Draw(image)
        if not days:
            return image

        day_width = (width - TIME_GUTTER_WIDTH) / len(days)
        self.draw_calendar_structure(draw, days, TIME_GUTTER_WIDTH, day_width, height)

        for i, day in enumerate(days):
            column_x = TIME_GUTTER_WIDTH + i * day_width
            for layout in layouts.get(day, []):
                self.draw_event(draw, layout, column_x, day_width)

        return image
