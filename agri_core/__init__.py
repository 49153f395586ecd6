"""AgriConnect offline operation queue and Supabase sync engine."""

__version__ = "0.1.0"
