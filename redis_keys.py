REDIS_SIGNAL_DESCRIPTION_KEY = "signal:sdp:{meeting_id}:{from_id}:{to_id}" # pending offer/answer - json string
REDIS_SIGNAL_CANDIDATES_KEY = "signal:ice:{meeting_id}:{from_id}:{to_id}" # list of json-encoded ICE candidates

# **Example `signal:sdp:{meeting}:{from}:{to}` value**
# - `{"kind": "offer", "sdp": "v=0...", "created_at": "2025-11-17T12:34:56"}`
# - a new offer/answer for the same ordered pair overwrites it
# - both keys carry the mailbox TTL and are deleted together on read
