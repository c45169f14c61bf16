"""tapstore: sales store, reports, CSV export and e-mail delivery for a beer tap stand."""

__version__ = "0.1.0"
