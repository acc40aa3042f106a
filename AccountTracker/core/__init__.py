"""
Core package for AccountTracker providing the data model, persistence and reconciliation.

This package includes:

- :mod:`AccountTracker.core.model` – Entities and input validation.
- :mod:`AccountTracker.core.tabular` – Mapping between the model and the tabs of a document.
- :mod:`AccountTracker.core.auth` – Google OAuth2 authentication and credential management.
- :mod:`AccountTracker.core.service` – Google Sheets API client with batched, asynchronous operations.
- :mod:`AccountTracker.core.autosave` – Dirty tracking and timed saving.
- :mod:`AccountTracker.core.store` – The application state, its reducer and document orchestration.
- :mod:`AccountTracker.core.context` – The application context owning the long-lived services.
- :mod:`AccountTracker.core.reconcile` – Statement reconciliation.
- :mod:`AccountTracker.core.codec` – Comma- and tab-separated text encoding.
- :mod:`AccountTracker.core.importer` – Bulk import and export of transactions.
"""
