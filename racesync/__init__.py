"""Team RSVP and practice scheduling for a sim-racing club."""
