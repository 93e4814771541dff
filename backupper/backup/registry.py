"""
Component registry.

Maps the short names used in trigger definitions ("S3", "PostgreSQL", ...)
to component classes, per category, and builds configured instances. A
reference may also be the exported class itself, as long as it is registered
for the requested category.
"""

from typing import Any, Dict, Mapping, Optional, Type, Union

from backupper.components import (
    Category,
    Component,
    DATABASES,
    STORAGES,
    COMPRESSORS,
    ENCRYPTORS,
    NOTIFIERS,
)
from backupper.errors import ConfigurationError

ComponentRef = Union[str, Type[Component]]


class ComponentRegistry:
    """Resolves component references to classes and builds instances."""

    def __init__(self):
        self._factories: Dict[Category, Dict[str, Type[Component]]] = {
            category: {} for category in Category
        }

    def register(self, category: Union[Category, str], name: str, cls: Type[Component]):
        """
        Register an implementation under a short name.

        Raises:
            ConfigurationError: If the class does not implement the category
        """
        category = self._category(category)
        if not isinstance(cls, type) or not issubclass(cls, Component) or cls.category is not category:
            raise ConfigurationError(f"{cls!r} is not a {category.value} component")
        self._factories[category][name.lower()] = cls

    def resolve(self, category: Union[Category, str], ref: ComponentRef) -> Type[Component]:
        """
        Resolve a short name or class handle to a component class.

        Args:
            category: Component category
            ref: Short name (case-insensitive) or registered class

        Returns:
            Component class

        Raises:
            ConfigurationError: If the reference is unknown for the category
        """
        category = self._category(category)
        factories = self._factories[category]

        if isinstance(ref, type):
            if ref in factories.values():
                return ref
            raise ConfigurationError(
                f"Unknown {category.value} component: {ref.__name__}"
            )

        if isinstance(ref, str) and ref.lower() in factories:
            return factories[ref.lower()]

        raise ConfigurationError(
            f"Unknown {category.value} component: {ref!r}. "
            f"Available: {', '.join(sorted(cls.kind for cls in factories.values()))}"
        )

    def build(self, category: Union[Category, str], ref: ComponentRef,
              options: Optional[Mapping[str, Any]] = None) -> Component:
        """
        Resolve a reference and construct a configured instance.

        Raises:
            ConfigurationError: If the reference or any option is invalid
        """
        cls = self.resolve(category, ref)
        options = dict(options or {})

        invalid_keys = [key for key in options if not isinstance(key, str)]
        if invalid_keys:
            raise ConfigurationError(f"Option names must be strings: {invalid_keys!r}")

        try:
            return cls(**options)
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid options for {self._category(category).value} '{cls.kind}': {e}")

    def is_registered(self, category: Union[Category, str], cls: type) -> bool:
        return cls in self._factories[self._category(category)].values()

    def names(self, category: Union[Category, str]):
        """Registered class names of a category, sorted."""
        return sorted(cls.kind for cls in self._factories[self._category(category)].values())

    @staticmethod
    def _category(category: Union[Category, str]) -> Category:
        if isinstance(category, Category):
            return category
        try:
            return Category(str(category).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown component category: {category!r}")


def create_default_registry() -> ComponentRegistry:
    """Registry with every built-in component."""
    default = ComponentRegistry()
    for classes in (DATABASES, STORAGES, COMPRESSORS, ENCRYPTORS, NOTIFIERS):
        for cls in classes:
            default.register(cls.category, cls.kind, cls)
    return default


# Read-only after import
registry = create_default_registry()
