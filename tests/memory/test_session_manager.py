import json

from tutor_chat.memory import Message, SessionManager
from tutor_chat.memory.pruning import meta_key
from tests.memory.base import KeyValueStoreTestCase


class SessionManagerTests(KeyValueStoreTestCase):
    def test_sessions_have_default_title_from_language(self) -> None:
        session = self._sessions.create_session(language="hi")

        self.assertEqual("Hindi Practice", session.title)
        self.assertTrue(session.id.startswith("session_"))
        self.assertEqual("u1", session.user_id)
        self.assertEqual([], session.messages)

    def test_explicit_title_is_kept(self) -> None:
        session = self._sessions.create_session(language="en", title="  Job interview  ")

        self.assertEqual("Job interview", session.title)

    def test_get_session_loads_persisted_messages(self) -> None:
        session = self._sessions.create_session(language="ta")
        self._session_store.save(session.id, [Message.create("vanakkam", is_user=True, language="ta")])

        loaded = self._sessions.get_session(session.id)

        self.assertIsNotNone(loaded)
        self.assertEqual("ta", loaded.language)
        self.assertEqual(["vanakkam"], [m.content for m in loaded.messages])

    def test_get_unknown_session_returns_none(self) -> None:
        self.assertIsNone(self._sessions.get_session("session_missing"))

    def test_unreadable_metadata_is_ignored(self) -> None:
        self._store.set_item(meta_key("session_bad"), json.dumps({"id": "session_bad"}))

        self.assertIsNone(self._sessions.get_session("session_bad"))
        self.assertEqual([], self._sessions.list_sessions())

    def test_list_sessions_newest_first_and_scoped_to_user(self) -> None:
        first = self._sessions.create_session(language="en", title="first")
        second = self._sessions.create_session(language="en", title="second")
        other_user = SessionManager(self._store, self._session_store, user_id="u2")
        other_user.create_session(language="en", title="not mine")
        stale = {**second.metadata_dict(), "updatedAt": "2020-01-01T00:00:00+00:00"}
        self._store.set_item(meta_key(second.id), json.dumps(stale))

        self._sessions.touch(first)

        titles = [s.title for s in self._sessions.list_sessions()]
        self.assertEqual(["first", "second"], titles)
        self.assertEqual(1, len(self._sessions.list_sessions(limit=1)))
        self.assertNotEqual(first.id, second.id)

    def test_delete_removes_messages_and_metadata(self) -> None:
        session = self._sessions.create_session(language="en")
        self._session_store.save(session.id, [Message.create("hi", is_user=True)])

        self._sessions.delete(session.id)

        self.assertIsNone(self._sessions.get_session(session.id))
        self.assertEqual([], self._session_store.load(session.id))
