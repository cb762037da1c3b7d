"""
roomcast.services.reactions
~~~~~~~~~~~~~~~~~~~~~~~~~~~

表情回应存储 —— 消息 ID → {表情: [回应者...]}。

同一用户对同一表情只能出现一次，再次回应即撤销（toggle）；
某个表情的回应者清空后，该表情键一并删除。
"""
from __future__ import annotations


class ReactionStore:
    def __init__(self) -> None:
        self._reactions: dict[str, dict[str, list[str]]] = {}

    def toggle(self, message_id: str, emoji: str, reactor: str) -> dict[str, list[str]]:
        """切换 ``reactor`` 在 ``emoji`` 下的回应，返回该消息的完整回应快照。"""
        by_emoji = self._reactions.setdefault(message_id, {})
        reactors = by_emoji.setdefault(emoji, [])
        if reactor in reactors:
            reactors.remove(reactor)
            if not reactors:
                del by_emoji[emoji]
        else:
            reactors.append(reactor)
        if not by_emoji:
            del self._reactions[message_id]
        return self.snapshot(message_id)

    def snapshot(self, message_id: str) -> dict[str, list[str]]:
        """返回副本，调用方修改不会影响内部状态。"""
        return {
            emoji: list(reactors)
            for emoji, reactors in self._reactions.get(message_id, {}).items()
        }
