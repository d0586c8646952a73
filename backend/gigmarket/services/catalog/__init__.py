"""Service catalog: pricing packages, sales and ratings."""
