"""Fleet and roster data: contract models, ingestion adapters, loaders, synthetic data."""
