"""HubSpot CRM integration -- property mapping, validation, schema cache, sync.

Forward sync pushes orders as contacts + deals through HubSpotSyncOrchestrator
(sync.py), validating every property bag against the live schema held in
PropertySchemaCache. Reverse sync maps HubSpot webhook property changes back
onto orders, quotes and customers (reverse_mapping.py). Field ownership
decides which side wins for each field.
"""
