"""Web API for the quiz engine."""
