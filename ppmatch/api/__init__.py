"""
PPMatch - API Package
=====================

FastAPI REST API for PPMatch.

Quick Start:
    uvicorn ppmatch.api.main:app --reload

Endpoints:
    GET  /health                                  - Health check

    POST /api/v1/search/project-context           - Rank records for a project
    POST /api/v1/search/freetext                  - Free-text search
    POST /api/v1/search/research                  - Research search
    POST /api/v1/search/context                   - Context within a token budget
    GET  /api/v1/search/configurations            - Search configurations
    POST /api/v1/search/configurations            - Save a configuration

    GET  /api/v1/technologies                     - Taxonomy listing
    POST /api/v1/technologies/approve             - Approve technologies
    POST /api/v1/technologies/reject              - Reject technologies
    GET  /api/v1/technologies/search?q=           - Search technologies
    GET  /api/v1/technologies/stats               - Usage statistics

    GET  /api/v1/capabilities/unified             - Unified capabilities

    POST /api/v1/ingest/{record_id}               - Ingest a record
    POST /api/v1/ingest/{record_id}/archive       - Archive a record
    POST /api/v1/ingest/retry-pending             - Re-embed pending chunks
"""
