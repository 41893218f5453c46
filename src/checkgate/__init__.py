"""checkgate - run CI quality gates and reduce them to one verdict."""

__version__ = "0.1.0"
