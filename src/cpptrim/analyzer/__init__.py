"""Front end: parsing, preprocessor scanning and dependency analysis."""
