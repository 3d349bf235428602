"""Form schema builder: schema store, drag-and-drop controller and conditional visibility rules."""

__version__ = "1.0.0"
