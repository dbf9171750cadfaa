"""College Orbit backend: recurring items and gamification."""
