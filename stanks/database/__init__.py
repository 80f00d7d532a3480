"""Database engine, ORM models and transaction coordination."""
