"""
Soundpost

A small publishing platform for audio articles: an admin uploads audio and
a thumbnail, the media CDN stores and transcodes them, and listeners stream
them through an adaptive player that picks a quality variant for their
device and recovers from flaky connections.

Repository Structure:
- shared/: API server, database, auth, models and constants
- player/: adaptive playback controller, mpv engine and terminal player
- media_tool/: media services (Cloudinary / local), ingestion and admin CLI
- tests/: Unit and integration tests

License: MIT
"""
