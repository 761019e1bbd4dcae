"""This module plans writes against Active Directory.

AD keeps a group's SID and ``primaryGroupToken`` across a server-side rename,
so renames are plain ModifyDN operations. Membership is a forward DN list on
the group (``member``); ``memberOf`` on the user is a read-only back link.
"""
from typing import Any
from loguru import logger
from ldap_class.actions import Action, Add, Delete, Move, Plan, Update
from ldap_class.entry import normalize_values, values_equal
from ldap_class.exceptions import MissingAttributeError, PlanningError
from ldap_class.planners.base import Planner
from ldap_class.schema import EntityKind
from ldap_class.utils.filters import dn, rdn, same_dn, split_dn


class AdPlanner(Planner):
    """Helpers shared by the AD user and group planners."""

    def entry_dn(self, name: str) -> str:
        return dn(rdn("cn", name), self.schema.search_base)

    def renamed_dn(self, name: str) -> str:
        """The DN the bound entry gets when its cn becomes ``name``."""
        _, parent = split_dn(self.entity.dn)
        return dn(rdn("cn", name), parent)

    @staticmethod
    def member_update(group: Any, add: list[str], remove: list[str]) -> Update:
        """Rewrite the ``member`` list of ``group``."""
        members = [
            member
            for member in group.get("member")
            if not any(same_dn(member, removed) for removed in remove)
        ]
        for member in add:
            if not any(same_dn(member, listed) for listed in members):
                members.append(member)
        return Update(group.dn, {"member": members or None})


class AdGroupPlanner(AdPlanner):
    """Plans for AD ``group`` entries."""

    def plan_create(self) -> Plan:
        (name,) = self.require("create", "cn")
        return Plan([Add(self.entry_dn(name), self.creation_attributes())])

    def plan_update(self) -> Plan:
        self.require_bound("update")
        plan = Plan()
        replacements = self.replacements(exclude=("cn", "objectClass"))
        if replacements:
            plan.add(Update(self.entity.dn, replacements))
        if self.is_changed("cn"):
            (new_name,) = self.require("rename", "cn")
            old_name = self.baseline("cn")
            if isinstance(new_name, list):
                raise PlanningError(f"Can not rename {old_name} to several names {new_name}")
            group_model = self.model(EntityKind.GROUP)
            if group_model(self.session).read("cn", new_name) is not None:
                raise PlanningError(f"Can not rename {old_name}: {new_name} already exists")
            logger.info(f"Renaming group {old_name} to {new_name}")
            plan.add(Move(self.entity.dn, self.renamed_dn(new_name)))
        return plan

    def plan_delete(self) -> Plan:
        self.require_bound("delete")
        self.guard_members()
        return Plan([Delete(self.entity.dn)])


class AdUserPlanner(AdPlanner):
    """Plans for AD ``user`` entries.

    AD refuses ``primaryGroupID`` on a new entry and only accepts a primary
    group the user is already a member of, so creation is an Add followed by
    membership updates and a separate ``primaryGroupID`` update.
    """

    def primary_group(self) -> Any:
        """The staged primary group, or the one ``primaryGroupID`` points at."""
        user = self.entity
        if user.staged_group is not None:
            return user.resolve_group(user.staged_group)
        if user.get("primaryGroupID") is None:
            return None
        if not user.is_bound:
            raise PlanningError(
                "A new user needs its primary group as a group object or name, "
                "not a primaryGroupID"
            )
        return user.resolve_group(user.get("primaryGroupID"))

    def derived_attributes(self, username: str) -> dict[str, Any]:
        """Values computed for attributes the caller did not set."""
        user = self.entity
        display_name, cn = user.get("displayName"), user.get("cn")
        sn, given_name = user.get("sn"), user.get("givenName")
        if not (display_name or cn or sn or given_name):
            raise MissingAttributeError(
                "either displayName, cn, sn or givenName must be set"
            )
        name_parts = str(cn or display_name or "").split()
        given_name = given_name or (name_parts.pop(0) if name_parts else None)
        sn = sn or " ".join(name_parts) or None
        cn = cn or " ".join(part for part in (given_name, sn) if part)
        defaults = self.schema.defaults
        suffix = defaults.get("email_suffix") or ""
        home_dir = str(defaults.get("home_dir", "\\home")).rstrip("\\")
        return {
            "cn": cn,
            "givenName": given_name,
            "sn": sn,
            "displayName": display_name or cn,
            "mail": f"{username}{suffix}" if suffix else None,
            "homeDirectory": f"{home_dir}\\{username}",
        }

    def wanted_groups(self, current: list[Any]) -> list[Any]:
        user = self.entity
        if user.staged_groups is None:
            return current
        return [user.resolve_group(group) for group in user.staged_groups]

    def plan_create(self) -> Plan:
        (username,) = self.require("create", "sAMAccountName")
        attributes = self.creation_attributes(exclude=("primaryGroupID",))
        for name, value in self.derived_attributes(username).items():
            if not normalize_values(attributes.get(name)) and normalize_values(value):
                attributes[name] = value
        if not normalize_values(attributes.get("unicodePwd")):
            raise MissingAttributeError("unicodePwd required to create()")
        user_dn = self.entry_dn(attributes["cn"])
        plan = Plan([Add(user_dn, attributes)])

        groups = self.wanted_groups([])
        for group in groups:
            plan.add(self.member_update(group, [user_dn], []))
        group = self.primary_group()
        if group is not None:
            if group not in groups:
                plan.add(self.member_update(group, [user_dn], []))
            plan.add(Update(user_dn, {"primaryGroupID": group.get("primaryGroupToken")}))
        return plan

    def plan_update(self) -> Plan:
        self.require_bound("update")
        user = self.entity
        (username,) = self.require("update", "sAMAccountName")
        plan = Plan()

        replacements = self.replacements(exclude=("cn", "primaryGroupID"))
        derived = self.derived_attributes(username)
        for name, value in list(replacements.items()):
            # a cleared attribute that can be derived is re-derived instead
            if value is None and normalize_values(derived.get(name)):
                replacements[name] = derived[name]
        if replacements:
            plan.add(Update(user.dn, replacements))

        # membership first: the member lists hold the DN as it is now
        current: list[Any] = []
        if user.staged_groups is not None:
            current = self.session.resolver.secondary_groups(user)
        wanted = self.wanted_groups(current)
        actions: list[Action] = []
        for group in wanted:
            if group not in current:
                actions.append(self.member_update(group, [user.dn], []))
        for group in current:
            if group not in wanted:
                actions.append(self.member_update(group, [], [user.dn]))
        plan.extend(actions)

        group = self.primary_group()
        if group is not None and not values_equal(
            group.get("primaryGroupToken"), self.baseline("primaryGroupID")
        ):
            logger.info(f"{username}: primary group changes to {group}")
            if group not in wanted:
                plan.add(self.member_update(group, [user.dn], []))
            plan.add(Update(user.dn, {"primaryGroupID": group.get("primaryGroupToken")}))

        if self.is_changed("cn"):
            (cn,) = self.require("rename", "cn")
            logger.info(f"Renaming user {self.baseline('cn')} to {cn}")
            plan.add(Move(user.dn, self.renamed_dn(cn)))
        return plan

    def plan_delete(self) -> Plan:
        self.require_bound("delete")
        return Plan([Delete(self.entity.dn)])
