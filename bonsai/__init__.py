"""Ticket workflow and agent dispatch coordination for the Bonsai board."""
