# WebSocket event type definitions
# Every frame is a JSON object: {"type": <one of these>, ...payload}

# Client -> server
USER_JOIN = "user.join"
USER_LEAVE = "user.leave"
MESSAGE_SEND = "message.send"
PRESENCE_HEARTBEAT = "presence.heartbeat"

# Server -> client
MESSAGE_HISTORY = "message.history"
MESSAGE_NEW = "message.new"

USER_JOINED = "user.joined"
USER_LEFT = "user.left"

PRESENCE_ROSTER = "presence.roster"

ERROR = "error"

# Both directions: client sends {isTyping}, server relays {username, isTyping}
USER_TYPING = "user.typing"
