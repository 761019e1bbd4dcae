"""This module plans writes against an RFC 2307 (POSIX) directory.

Users live at ``uid=<user>,ou=<primary group>,ou=People,<base>``: every group
has an organizational unit under ``ou=People`` holding its primary members, so
renaming a group or changing a user's primary group moves entries around.
"""
from typing import Any
from loguru import logger
from unidecode import unidecode
from ldap_class.actions import Action, Add, Delete, Move, Plan, Search, Update
from ldap_class.entry import normalize_values, values_equal
from ldap_class.exceptions import (
    IntegrityError,
    MissingAttributeError,
    PlanningError,
    ValidationError,
)
from ldap_class.planners.base import Planner
from ldap_class.schema import EntityKind, RESERVED_GID
from ldap_class.utils.filters import and_, dn, eq, rdn, split_dn

ORGANIZATIONAL_UNIT_CLASSES = ["top", "organizationalUnit"]


class PosixPlanner(Planner):
    """Helpers shared by the POSIX user and group planners."""

    @property
    def user_schema(self) -> Any:
        return self.session.registry.resolve(EntityKind.USER, self.entity.variant)

    @property
    def group_schema(self) -> Any:
        return self.session.registry.resolve(EntityKind.GROUP, self.entity.variant)

    def group_dn(self, name: str) -> str:
        return dn(rdn("cn", name), self.group_schema.search_base)

    def unit_dn(self, group_name: str) -> str:
        """The organizational unit holding the primary members of a group."""
        return dn(rdn("ou", group_name), self.user_schema.search_base)

    def user_dn(self, uid: str, group_name: str) -> str:
        return dn(rdn("uid", uid), self.unit_dn(group_name))

    def user_target(self, uid: str) -> Search:
        """Find a user by uid wherever it currently sits under ``ou=People``."""
        return Search(
            self.user_schema.search_base,
            and_(eq("objectClass", self.user_schema.structural_class), eq("uid", uid)),
        )

    def group_target(self, name: str) -> Search:
        return Search(
            self.group_schema.search_base,
            and_(eq("objectClass", self.group_schema.structural_class), eq("cn", name)),
        )

    def users_with_gid(self, gid: Any) -> list[Any]:
        return self.model(EntityKind.USER).find(self.session, eq("gidNumber", gid))

    def groups_with_gid(self, gid: Any) -> list[Any]:
        return self.model(EntityKind.GROUP).find(self.session, eq("gidNumber", gid))

    def member_uid_update(self, group: Any, add: list[str], remove: list[str]) -> Update:
        """Rewrite the ``memberUid`` list of ``group``."""
        removed = {uid.lower() for uid in remove}
        uids = [uid for uid in group.get("memberUid") if uid.lower() not in removed]
        for uid in add:
            if uid.lower() not in {listed.lower() for listed in uids}:
                uids.append(uid)
        return Update(self.group_target(group.get("cn")), {"memberUid": uids or None})


class PosixGroupPlanner(PosixPlanner):
    """Plans for ``posixGroup`` entries and their organizational units.

    Examples
    --------
    A rename of ``eng`` (gid 1000, primary group of alice) to ``engineering``::

        1. update cn=eng,ou=Group,... [gidNumber]            (reserved gid)
        2. add cn=engineering,ou=Group,...                   (gid 1000)
        3. add ou=engineering,ou=People,...
        4. update (uid=alice) under ou=People,... [gidNumber]
        5. move (uid=alice) under ou=People,... -> uid=alice,ou=engineering,...
        6. delete ou=eng,ou=People,...
        7. delete cn=eng,ou=Group,...
    """

    @property
    def reserved_gid(self) -> int:
        return int(self.schema.defaults.get("reserved_gid", RESERVED_GID))

    def create_actions(
        self, name: str, gid: Any, member_uids: Any = None, description: Any = None
    ) -> list[Action]:
        attributes: dict[str, Any] = {
            "objectClass": list(self.schema.object_classes),
            "cn": name,
            "gidNumber": gid,
        }
        if normalize_values(member_uids):
            attributes["memberUid"] = member_uids
        if normalize_values(description):
            attributes["description"] = description
        return [
            Add(self.group_dn(name), attributes),
            Add(
                self.unit_dn(name),
                {"objectClass": list(ORGANIZATIONAL_UNIT_CLASSES), "ou": name},
            ),
        ]

    def delete_actions(self, name: str, group_dn: str) -> list[Action]:
        return [Delete(self.unit_dn(name)), Delete(group_dn)]

    def check_gid(self, gid: Any) -> None:
        """Refuse the reserved gid and gids owned by another group."""
        if not str(gid).isdigit():
            raise ValidationError(f"gidNumber must be a positive integer, not {gid!r}")
        if int(gid) == self.reserved_gid:
            raise ValidationError(
                f"gidNumber {gid} is reserved for renames and can not be assigned"
            )
        for group in self.groups_with_gid(gid):
            if group.dn != self.entity.dn:
                raise IntegrityError(f"gidNumber {gid} is already used by group {group}")

    def plan_create(self) -> Plan:
        name, gid = self.require("create", "cn", "gidNumber")
        self.check_gid(gid)
        return Plan(
            self.create_actions(
                name,
                gid,
                self.entity.get("memberUid"),
                self.entity.get("description"),
            )
        )

    def plan_update(self) -> Plan:
        self.require_bound("update")
        if self.is_changed("cn"):
            return self.plan_rename()
        plan = Plan()
        replacements = self.replacements()
        if not replacements:
            return plan
        if "gidNumber" in replacements:
            old_gid = self.baseline("gidNumber")
            (new_gid,) = self.require("update", "gidNumber")
            self.check_gid(new_gid)
            plan.add(Update(self.entity.dn, replacements))
            for user in self.users_with_gid(old_gid):
                plan.add(Update(self.user_target(user.get("uid")), {"gidNumber": new_gid}))
            return plan
        return plan.add(Update(self.entity.dn, replacements))

    def check_no_interrupted_rename(self) -> None:
        """Refuse to start a rename while another one left its marker behind.

        Raises
        ------
        IntegrityError
            A group holds the reserved gidNumber.
        """
        stale = self.groups_with_gid(self.reserved_gid)
        if stale:
            raise IntegrityError(
                f"Group(s) {[str(group) for group in stale]} hold the reserved "
                f"gidNumber {self.reserved_gid}: an earlier rename did not finish. "
                "Restore the group's gidNumber before renaming again."
            )

    def plan_rename(self) -> Plan:
        """Move the group to a new cn.

        The cn is both the group's RDN and the name of the unit its primary
        members live in, so the group is recreated under the new name, its
        primary members are moved across, and the old entries are removed last.
        The old group holds the reserved gid while both exist.
        """
        old_name = self.baseline("cn")
        new_name, new_gid = self.require("rename", "cn", "gidNumber")
        if not old_name:
            raise PlanningError(f"Can not rename {self.entity!r}: no previous cn")
        if isinstance(new_name, list):
            raise PlanningError(f"Can not rename {old_name} to several names {new_name}")
        if str(new_name).lower() == str(old_name).lower():
            raise PlanningError(
                f"Renaming {old_name} to {new_name} only changes case, which the "
                "directory treats as the same name"
            )
        group_model = self.model(EntityKind.GROUP)
        if group_model(self.session).read("cn", new_name) is not None:
            raise PlanningError(f"Can not rename {old_name}: {new_name} already exists")
        self.check_no_interrupted_rename()
        old_gid = self.baseline("gidNumber")
        if self.is_changed("gidNumber"):
            self.check_gid(new_gid)
        logger.info(f"Renaming group {old_name} to {new_name}")

        plan = Plan([Update(self.entity.dn, {"gidNumber": self.reserved_gid})])
        plan.extend(
            self.create_actions(
                new_name,
                new_gid,
                self.entity.get("memberUid"),
                self.entity.get("description"),
            )
        )
        for user in self.users_with_gid(old_gid):
            uid = user.get("uid")
            plan.add(Update(self.user_target(uid), {"gidNumber": new_gid}))
            plan.add(Move(self.user_target(uid), self.user_dn(uid, new_name)))
        plan.extend(self.delete_actions(old_name, self.entity.dn))
        return plan

    def plan_delete(self) -> Plan:
        self.require_bound("delete")
        self.guard_members()
        return Plan(self.delete_actions(self.baseline("cn"), self.entity.dn))


class PosixUserPlanner(PosixPlanner):
    """Plans for ``posixAccount`` entries."""

    # -- derived values -------------------------------------------------------

    def primary_group(self) -> Any:
        """The group the user should end up in: the staged one, or the one
        owning its gidNumber.

        Raises
        ------
        MissingAttributeError
            Neither a group nor a gidNumber is set.
        PlanningError
            The group does not exist.
        """
        user = self.entity
        if user.staged_group is not None:
            return user.resolve_group(user.staged_group)
        gid = user.get("gidNumber")
        if gid is None:
            raise MissingAttributeError("group or gidNumber required")
        return user.resolve_group(gid)

    def derived_names(self) -> dict[str, Any]:
        """givenName, sn and gecos, each filled from the others when missing."""
        user = self.entity
        gecos, sn, given_name = user.get("gecos"), user.get("sn"), user.get("givenName")
        if not (gecos or sn or given_name):
            raise MissingAttributeError("either gecos, sn or givenName must be set")
        name_parts = str(gecos or "").split()
        given_name = given_name or (name_parts.pop(0) if name_parts else None)
        sn = sn or " ".join(name_parts) or given_name
        gecos = gecos or " ".join(part for part in (given_name, sn) if part)
        return {"givenName": given_name, "sn": sn, "gecos": unidecode(str(gecos))}

    def derived_attributes(self, uid: str, group: Any) -> dict[str, Any]:
        """Values computed for attributes the caller did not set."""
        defaults = self.schema.defaults
        suffix = defaults.get("email_suffix") or ""
        derived = {
            "cn": uid,
            "gidNumber": group.get("gidNumber"),
            "homeDirectory": f"{str(defaults.get('home_dir', '/home')).rstrip('/')}/{uid}",
            "loginShell": defaults.get("login_shell", "/bin/bash"),
            "mail": f"{uid}{suffix}" if suffix else None,
        }
        derived.update(self.derived_names())
        return derived

    def groups_listing(self, uid: str) -> list[Any]:
        """Groups whose memberUid holds ``uid``."""
        return self.model(EntityKind.GROUP).find(self.session, eq("memberUid", uid))

    def membership_changes(
        self, old_uid: str | None, uid: str, current: list[Any]
    ) -> list[Action]:
        """memberUid updates turning the ``current`` secondary groups into the
        staged ones, renaming ``old_uid`` to ``uid`` in those kept."""
        user = self.entity
        if user.staged_groups is None:
            wanted = current
        else:
            wanted = [user.resolve_group(group) for group in user.staged_groups]
        renamed = old_uid is not None and old_uid != uid
        actions: list[Action] = []
        for group in wanted:
            if group not in current:
                actions.append(self.member_uid_update(group, [uid], []))
            elif renamed:
                actions.append(self.member_uid_update(group, [uid], [old_uid]))  # type: ignore[list-item]
        for group in current:
            if group not in wanted:
                actions.append(self.member_uid_update(group, [], [old_uid or uid]))
        return actions

    # -- plans --------------------------------------------------------------------

    def plan_create(self) -> Plan:
        uid, _ = self.require("create", "uid", "uidNumber")
        group = self.primary_group()
        attributes = self.creation_attributes()
        for name, value in self.derived_attributes(uid, group).items():
            # gidNumber follows the group, gecos is IA5 (ASCII) only
            if name in ("gidNumber", "gecos") or not normalize_values(attributes.get(name)):
                if normalize_values(value):
                    attributes[name] = value
        if not normalize_values(attributes.get("userPassword")):
            raise MissingAttributeError("userPassword required to create()")
        plan = Plan([Add(self.user_dn(uid, group.get("cn")), attributes)])
        return plan.extend(self.membership_changes(None, uid, []))

    def plan_update(self) -> Plan:
        self.require_bound("update")
        user = self.entity
        uid, _ = self.require("update", "uid", "uidNumber")
        old_uid = self.baseline("uid")
        group = self.primary_group()
        plan = Plan()

        replacements = self.replacements(exclude=("uid", "gidNumber"))
        derived = self.derived_attributes(uid, group)
        for name, value in list(replacements.items()):
            # a cleared attribute that can be derived is re-derived instead
            if value is None and normalize_values(derived.get(name)):
                replacements[name] = derived[name]
        if replacements.get("gecos"):
            replacements["gecos"] = derived["gecos"]
        if replacements:
            plan.add(Update(user.dn, replacements))

        current_dn = user.dn
        if self.is_changed("uid"):
            logger.info(f"Renaming user {old_uid} to {uid}")
            _, parent = split_dn(current_dn)
            plan.add(Move(current_dn, dn(rdn("uid", uid), parent)))
            current_dn = dn(rdn("uid", uid), parent)
        if not values_equal(group.get("gidNumber"), self.baseline("gidNumber")):
            logger.info(f"{uid}: primary group changes to {group}")
            plan.add(Update(current_dn, {"gidNumber": group.get("gidNumber")}))
            plan.add(Move(current_dn, self.user_dn(uid, group.get("cn"))))

        if user.staged_groups is not None or self.is_changed("uid"):
            plan.extend(
                self.membership_changes(old_uid, uid, self.groups_listing(old_uid))
            )
        return plan

    def plan_delete(self) -> Plan:
        self.require_bound("delete")
        uid = self.baseline("uid")
        plan = Plan(
            [self.member_uid_update(group, [], [uid]) for group in self.groups_listing(uid)]
        )
        return plan.add(Delete(self.entity.dn))
