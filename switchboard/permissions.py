"""Who may post where, as a declarative rule table.

Each rule names a channel type, the roles it applies to (None for any role,
including an unrecognised one) and a predicate over the posting context.
A user may post when the channel is not archived and at least one rule for the
channel's type matches. Types without rules fall back to Admin only.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .models import Channel, ChannelType, Member, Role, User

log = logging.getLogger(__name__)

TOP_AUTHORITY = frozenset({Role.EXECUTIVE, Role.MAIN_PMO, Role.ADMIN})
DIRECTOR_PEERS = frozenset({Role.DEPARTMENT_DIRECTOR, Role.MAIN_PMO, Role.EXECUTIVE})


@dataclass(frozen=True)
class Context:
    user: User
    channel: Channel
    recipient: User | Member | None = None


Predicate = Callable[[Context], bool]


def always(ctx: Context) -> bool:
    return True


def _same_department(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a == b


def directs_channel_department(ctx: Context) -> bool:
    return _same_department(ctx.user.department_id, ctx.channel.department_id)


def on_project_team(ctx: Context) -> bool:
    user_id = ctx.user.user_id
    if not user_id:
        return False
    return user_id == ctx.channel.project_manager_id or user_id in ctx.channel.project_team_ids


def recipient_shares_department(ctx: Context) -> bool:
    if ctx.recipient is None:
        return False
    return _same_department(ctx.user.department_id, ctx.recipient.department_id)


def recipient_is_director_peer(ctx: Context) -> bool:
    return ctx.recipient is not None and ctx.recipient.role in DIRECTOR_PEERS


def director_may_message(ctx: Context) -> bool:
    return recipient_is_director_peer(ctx) or recipient_shares_department(ctx)


@dataclass(frozen=True)
class Rule:
    channel_type: ChannelType | None
    roles: frozenset[Role] | None
    predicate: Predicate
    description: str

    def applies(self, ctx: Context) -> bool:
        if self.roles is not None and ctx.user.role not in self.roles:
            return False
        return self.predicate(ctx)


RULES: tuple[Rule, ...] = (
    Rule(ChannelType.GENERAL, TOP_AUTHORITY, always, "top authority broadcasts"),
    Rule(
        ChannelType.DEPARTMENT,
        frozenset({Role.DEPARTMENT_DIRECTOR}),
        directs_channel_department,
        "director of this department",
    ),
    Rule(ChannelType.DEPARTMENT, frozenset({Role.ADMIN}), always, "admin"),
    Rule(ChannelType.DIRECT_MESSAGE, TOP_AUTHORITY, always, "top authority messages anyone"),
    Rule(
        ChannelType.DIRECT_MESSAGE,
        frozenset({Role.DEPARTMENT_DIRECTOR}),
        director_may_message,
        "director messages peers or own department",
    ),
    Rule(
        ChannelType.DIRECT_MESSAGE,
        None,
        recipient_shares_department,
        "recipient in same department",
    ),
    Rule(ChannelType.PROJECT, None, on_project_team, "project team or manager"),
    Rule(ChannelType.PROJECT, frozenset({Role.ADMIN}), always, "admin"),
)

FALLBACK = Rule(None, frozenset({Role.ADMIN}), always, "admin")


def direct_recipient(user: User, channel: Channel) -> Member | None:
    """The member of a direct channel who is not `user`."""
    others = [m for m in channel.members if m.user_id != user.user_id]
    return others[0] if len(others) == 1 else None


class PermissionPolicy:
    def __init__(self, rules: tuple[Rule, ...] = RULES, fallback: Rule = FALLBACK):
        self.rules = rules
        self.fallback = fallback

    def rules_for(self, channel_type: ChannelType | None) -> tuple[Rule, ...]:
        matching = tuple(r for r in self.rules if r.channel_type is not None and r.channel_type == channel_type)
        return matching or (self.fallback,)

    def explain(
        self, user: User, channel: Channel, recipient: User | Member | None = None
    ) -> tuple[bool, str]:
        """Decision plus the reason. Never raises."""
        try:
            if channel.archived:
                return False, "channel is archived"
            if channel.channel_type is ChannelType.DIRECT_MESSAGE and recipient is None:
                recipient = direct_recipient(user, channel)
            ctx = Context(user=user, channel=channel, recipient=recipient)
            for rule in self.rules_for(channel.channel_type):
                if rule.applies(ctx):
                    return True, rule.description
            return False, "no rule allows posting"
        except Exception as e:
            log.warning(f"Permission check failed closed: {e}")
            return False, "permission check failed"

    def can_post(self, user: User, channel: Channel, recipient: User | Member | None = None) -> bool:
        return self.explain(user, channel, recipient)[0]


_default = PermissionPolicy()


def can_post(user: User, channel: Channel, recipient: User | Member | None = None) -> bool:
    return _default.can_post(user, channel, recipient)
