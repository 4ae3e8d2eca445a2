"""
Twilio Media Streams to OpenAI Realtime call bridge.
"""
