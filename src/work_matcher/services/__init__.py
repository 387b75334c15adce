"""Work Matcher domain services."""
