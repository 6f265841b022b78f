"""ACL descriptors."""

from dataclasses import dataclass, field

from recordmigrate.repository.base import RepositoryObject


@dataclass
class AclDescriptor:
    """A saved ACL and its grants, in repository order.

    Attributes:
        acl_id: Repository id of the dm_acl object
        name: ACL object name
        domain: Owning domain (the ACL's owner_name)
        grants: Ordered (accessor, permit) pairs
    """

    acl_id: str
    name: str
    domain: str = ""
    grants: list[tuple[str, int]] = field(default_factory=list)

    @property
    def accessors(self) -> list[str]:
        return [accessor for accessor, _ in self.grants]

    @classmethod
    def from_object(cls, acl: RepositoryObject) -> "AclDescriptor":
        names = acl.values("r_accessor_name")
        permits = acl.values("r_accessor_permit")
        return cls(
            acl_id=acl.object_id,
            name=acl.name,
            domain=str(acl.get("owner_name") or ""),
            grants=[(str(name), int(permit)) for name, permit in zip(names, permits, strict=False)],
        )
