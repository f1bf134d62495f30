"""
Core query and analytics layer.

This package contains:
- models: BusinessRecord, ProductionItem, GraphBucket and value parsing helpers
- data_loader: record stores (in-memory, registry REST API) and snapshots
- filters / search / sorting / paginator: the directory query stages
- query_engine: the filter -> search -> sort -> paginate pipeline
- normalization / aggregator: canonical labels and dashboard series
- importer / export: spreadsheet bulk import and export with NID masking
"""
