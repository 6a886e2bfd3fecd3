"""
Integration Tests for LeadFlow

Integration tests cover end-to-end scenarios:
- Enrollment through scheduler passes to completion
- Database persistence (progress rows, nudge tracking, step audit trail)
- API actions driving the engine
"""
