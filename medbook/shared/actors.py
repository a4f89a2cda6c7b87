"""The authenticated party acting on the scheduling core."""

from dataclasses import dataclass

from medbook.shared.enums import ActorRole


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the external identity service.

    ``actor_id`` is the patient id for patients, the provider id for
    providers, and an opaque admin id for administrators.
    """

    actor_id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN

    def is_party_to(self, patient_id: str, provider_id: str) -> bool:
        if self.role is ActorRole.PATIENT:
            return self.actor_id == patient_id
        if self.role is ActorRole.PROVIDER:
            return self.actor_id == provider_id
        return self.is_admin
