from .viewport import PointerEvent, Viewport, ViewportEvent, ViewportEvents
