# Mingle protocol constants (numeric envelope keys and event types)

MINGLE_VERSION = 1

# Envelope keys
K_V = 0
K_T = 1
K_ID = 2
K_TS = 3
K_SRC = 4
K_BODY = 6

# Inbound event types (client -> hub)
T_JOIN = 10
T_SEND_MESSAGE = 20
T_SEND_PRIVATE_MESSAGE = 21
T_LIKE_USER = 30
T_TYPING = 40
T_GET_MESSAGES = 50
T_GET_USERS = 51
T_REMOVE_MESSAGE = 60

# Outbound event types (hub -> client)
T_JOIN_SUCCESS = 11
T_NICKNAME_ERROR = 12
T_RECENT_MESSAGES = 13
T_USER_LIST = 14
T_USER_LIST_UPDATE = 15
T_USER_JOINED = 16
T_USER_LEFT = 17

T_NEW_MESSAGE = 22
T_NEW_PRIVATE_MESSAGE = 23

T_LIKE_RECEIVED = 31
T_MUTUAL_LIKE = 32
T_LIKE_WARNING = 33

T_USER_TYPING = 41

T_MESSAGE_REMOVED = 61
T_REMOVE_RESULT = 62

T_ERROR = 90

# Body field names. These mirror the event contract used by web clients.
F_NICKNAME = "nickname"
F_CONTENT = "content"
F_TARGET = "targetNickname"
F_IS_TYPING = "isTyping"
F_FROM = "from"
F_ROOM_ID = "chatRoomId"
F_MESSAGE_ID = "messageId"
F_ADMIN_SECRET = "adminSecret"
F_MESSAGE = "message"
F_SUCCESS = "success"
F_ERROR = "error"

STATUS_ONLINE = "online"

MSG_KIND_PUBLIC = "public"
MSG_KIND_PRIVATE = "private"

ROOM_ID_SEPARATOR = "_"

NICK_MIN_CHARS = 2
NICK_MAX_CHARS = 20

HISTORY_PERSIST_LIMIT = 100
HISTORY_SYNC_LIMIT = 50
