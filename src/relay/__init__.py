"""Per-call relay between Twilio Media Streams and the OpenAI Realtime API.

Everything in here is transient: sessions and transcripts live only for the
duration of one call.
"""
