"""Core (UI-agnostic) sites dashboard logic.

This package contains:
- spreadsheet ingestion (XLSX -> row dicts)
- record normalization, QC flags and coordinate inference
- filter engine and aggregations
- view compute functions (JSON-serializable payloads)
- chart helpers (Altair -> Vega-Lite spec dict)
"""
