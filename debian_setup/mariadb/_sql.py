# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Statements sent to the mariadb client on stdin.

Passwords are embedded in the SQL text, so the text never goes to a command line.
"""


def literal(value: str) -> str:
    r"""Quote a string literal for MariaDB.

    >>> print(literal("it's"))
    'it\'s'
    >>> print(literal('back\\slash'))
    'back\\slash'
    """
    escaped = value.replace('\\', '\\\\').replace("'", "\\'").replace('\0', '\\0')
    return f"'{escaped}'"


def create_replication_user(user: str, password: str) -> str:
    return (
        f"CREATE OR REPLACE USER {literal(user)}@'%' IDENTIFIED BY {literal(password)};\n"
        f"GRANT REPLICATION SLAVE ON *.* TO {literal(user)}@'%';\n"
        "FLUSH PRIVILEGES;\n"
        )


def start_replication(primary: str, user: str, password: str, gtid: str) -> str:
    return (
        "STOP SLAVE;\n"
        f"SET GLOBAL gtid_slave_pos={literal(gtid)};\n"
        + change_master(primary, user, password)
        + "START SLAVE;\n"
        )


def change_master(primary: str, user: str, password: str) -> str:
    return (
        "CHANGE MASTER TO\n"
        f"    MASTER_HOST={literal(primary)},\n"
        f"    MASTER_USER={literal(user)},\n"
        f"    MASTER_PASSWORD={literal(password)},\n"
        "    MASTER_USE_GTID=slave_pos;\n"
        )


def change_master_password(password: str) -> str:
    return (
        "STOP SLAVE;\n"
        f"CHANGE MASTER TO MASTER_PASSWORD={literal(password)};\n"
        "START SLAVE;\n"
        )


def fence_writes() -> str:
    return "SET GLOBAL read_only = ON;\nFLUSH TABLES WITH READ LOCK;\n"


def promote() -> str:
    return "STOP SLAVE;\nRESET MASTER;\nSET GLOBAL read_only = OFF;\n"


def demote(new_primary: str, user: str, password: str) -> str:
    return "UNLOCK TABLES;\n" + change_master(new_primary, user, password) + "START SLAVE;\n"
