"""
Domain layer for sender management business logic.

This layer contains:
- Data models and the error taxonomy
- Tier policy and the verification state machine
- Input validation and DNS setup guidance
- The sender lifecycle manager
"""
