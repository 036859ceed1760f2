"""
School Administration Backend
CRUD API over a MongoDB document store.

Architecture:
- MongoDB: accounts, persons, students (linked by ObjectId references)
- Student lifecycle: Account + Person + Student written together in one transaction
- JWT: token login for accounts
"""

__version__ = "1.0.0"
