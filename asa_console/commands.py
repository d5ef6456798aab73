# asa_console/commands.py
# Console grammar of the ASA dedicated server. Strings must match exactly.

BROADCAST = "Broadcast"
SAVE_WORLD = "SaveWorld"
DO_EXIT = "DoExit"
DESTROY_WILD_DINOS = "DestroyWildDinos"
LIST_PLAYERS = "ListPlayers"

DEFAULT_BATCH = (SAVE_WORLD, DESTROY_WILD_DINOS)


def broadcast(message: str) -> str:
    return f"{BROADCAST} {message}"
