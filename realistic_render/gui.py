"""Debug panel: a table of bindings between widgets and live scene objects.

Each binding names its target object and attribute explicitly. Setting a
binding writes straight to the target; the renderer sees the change on the
next frame.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import viser

from .scene import Color

logger = logging.getLogger(__name__)

Dispatch = Callable[..., None]


@dataclass
class NumericBinding:
    """Slider bound to a numeric attribute."""
    target: Any
    attribute: str
    min: float
    max: float
    step: float = 0.001
    label: str = ""

    def __post_init__(self):
        if self.min > self.max:
            raise ValueError(f"{self.label}: min {self.min} > max {self.max}")
        if not hasattr(self.target, self.attribute):
            raise AttributeError(f"{type(self.target).__name__} has no attribute {self.attribute!r}")

    def get_value(self) -> float:
        return getattr(self.target, self.attribute)

    def set_value(self, value: float) -> None:
        """Write value to the target.

        Raises:
            ValueError: If value is outside [min, max]
        """
        value = float(value)
        if not self.min <= value <= self.max:
            raise ValueError(f"{self.label}: {value} outside [{self.min}, {self.max}]")
        setattr(self.target, self.attribute, value)

    def initial_widget_value(self) -> float:
        # Sliders can't show values outside their range.
        return min(self.max, max(self.min, self.get_value()))


@dataclass
class ColorBinding:
    """Color picker bound to a hex string in ``holder``.

    ``apply`` receives the new hex string and copies it onto the real
    color object, since widgets only deal in strings.
    """
    holder: Dict[str, str]
    key: str
    apply: Callable[[str], None]
    label: str = ""

    def get_value(self) -> str:
        return self.holder[self.key]

    def set_value(self, value: Union[str, Sequence[int]]) -> None:
        """Store and apply a color given as '#rrggbb' or an 8-bit RGB triple.

        Raises:
            ValueError: If the value is not a valid color
        """
        if isinstance(value, str):
            hex_value = Color(value).get_hex_string()
        else:
            components = tuple(int(c) for c in value)
            if len(components) != 3 or any(not 0 <= c <= 255 for c in components):
                raise ValueError(f"{self.label}: invalid RGB value {value!r}")
            hex_value = "#{:02x}{:02x}{:02x}".format(*components)
        self.holder[self.key] = hex_value
        self.apply(hex_value)

    def initial_widget_value(self) -> Tuple[int, int, int]:
        return Color(self.get_value()).to_rgb255()


@dataclass
class OptionBinding:
    """Dropdown mapping labels to values of an attribute."""
    target: Any
    attribute: str
    options: Dict[str, Any]
    label: str = ""

    def __post_init__(self):
        if not self.options:
            raise ValueError(f"{self.label}: no options")

    def get_value(self) -> Any:
        return getattr(self.target, self.attribute)

    def get_label(self) -> str:
        current = self.get_value()
        for option_label, value in self.options.items():
            if value == current:
                return option_label
        return next(iter(self.options))

    def set_value(self, option_label: str) -> None:
        """Select an option by its label.

        Raises:
            ValueError: If the label is not one of the options
        """
        if option_label not in self.options:
            raise ValueError(f"{self.label}: unknown option {option_label!r}")
        setattr(self.target, self.attribute, self.options[option_label])

    def initial_widget_value(self) -> str:
        return self.get_label()


Binding = Union[NumericBinding, ColorBinding, OptionBinding]


@dataclass
class Folder:
    label: str
    children: List[Union["Folder", Binding]] = field(default_factory=list)
    expand_by_default: bool = True

    def add(self, child: Union["Folder", Binding]) -> Union["Folder", Binding]:
        self.children.append(child)
        return child

    def add_folder(self, label: str) -> "Folder":
        return self.add(Folder(label))

    def walk(self, prefix: str = "") -> Iterator[Tuple[str, Binding]]:
        base = f"{prefix}{self.label}/"
        for child in self.children:
            if isinstance(child, Folder):
                yield from child.walk(base)
            else:
                yield f"{base}{child.label}", child


class DebugPanel:
    """Binding tree plus its viser widgets."""

    def __init__(self):
        self.folders: List[Folder] = []
        self.widgets: Dict[str, Any] = {}

    def add_folder(self, label: str) -> Folder:
        folder = Folder(label)
        self.folders.append(folder)
        return folder

    def bindings(self) -> Dict[str, Binding]:
        """All bindings keyed by 'Folder/Sub/Label'."""
        table = {}
        for folder in self.folders:
            for path, binding in folder.walk():
                table[path] = binding
        return table

    def find(self, path: str) -> Binding:
        try:
            return self.bindings()[path]
        except KeyError:
            raise KeyError(f"No binding at {path!r}")

    def build(self, gui: viser.GuiApi, dispatch: Optional[Dispatch] = None) -> None:
        """Create the viser widgets.

        Args:
            gui: ``server.gui`` of the viser server
            dispatch: Used to hand widget changes to the frame loop; changes
                are applied on the widget thread when None
        """
        for folder in self.folders:
            self._build_folder(gui, folder, "", dispatch)
        logger.info(f"Debug panel built with {len(self.widgets)} widgets")

    def _build_folder(self, gui: viser.GuiApi, folder: Folder, prefix: str,
                      dispatch: Optional[Dispatch]) -> None:
        base = f"{prefix}{folder.label}/"
        with gui.add_folder(folder.label, expand_by_default=folder.expand_by_default):
            for child in folder.children:
                if isinstance(child, Folder):
                    self._build_folder(gui, child, base, dispatch)
                    continue

                if isinstance(child, NumericBinding):
                    handle = gui.add_slider(
                        child.label,
                        min=child.min, max=child.max, step=child.step,
                        initial_value=child.initial_widget_value(),
                    )
                elif isinstance(child, ColorBinding):
                    handle = gui.add_rgb(child.label, initial_value=child.initial_widget_value())
                else:
                    handle = gui.add_dropdown(
                        child.label,
                        options=tuple(child.options),
                        initial_value=child.initial_widget_value(),
                    )

                handle.on_update(self._make_listener(child, handle, dispatch))
                self.widgets[f"{base}{child.label}"] = handle

    def _make_listener(self, binding: Binding, handle: Any,
                       dispatch: Optional[Dispatch]) -> Callable[[Any], None]:
        def on_update(_) -> None:
            value = handle.value
            if dispatch is not None:
                dispatch(self._apply, binding, value)
            else:
                self._apply(binding, value)
        return on_update

    @staticmethod
    def _apply(binding: Binding, value: Any) -> None:
        try:
            binding.set_value(value)
        except ValueError as e:
            logger.warning(f"Rejected panel value: {e}")
