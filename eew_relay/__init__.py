"""Earthquake early warning relay.

Receives EEW payloads, filters them by severity and policy, and posts
them to Misskey with a minimum spacing between notes.
"""
