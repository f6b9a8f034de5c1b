"""
Services Layer

Bracket business logic:
- Take sessions and plain domain inputs (participants, match ids, results)
- Return models or dataclasses, never HTTP objects
- Only the orchestrator and the store write to the database
"""
