"""
One policy per owner.

A binder is the lazily created link between a resource (or identity) and
the single policy document attached to it. The document and the attachment
construct only come into existence with the first statement (or an
explicit attach()), and every later statement lands in the same document.
"""
import pulumi

from cutils.component import Construct, opts
from cutils.deferred import Reference

from .crossstack import CrossStackReferenceResolver
from .document import PolicyDocument
from .errors import AmbiguousDependencyCycle, InvalidPolicyStatement, ValidationError
from .principals import AddToResourcePolicyResult, AddToPrincipalPolicyResult
from . import config

__all__ = (
    'PolicyAttachment', 'PolicyBinder', 'ResourcePolicyBinder', 'IdentityPolicyBinder',
    'TrustPolicyBinder',
)


class PolicyAttachment(Construct):
    """
    The construct that attaches a document to its owner, e.g. an
    aws_s3_bucket_policy.
    """
    __namespace__ = 'iamsynth:PolicyAttachment'

    def set_up(self, name, *, binder, resource_type, __opts__):
        self.binder = binder
        self.resource_type = resource_type
        # Filled in by finalize
        self.policy = None

    @property
    def document(self):
        return self.binder.document

    @property
    def target(self):
        return self.binder.target


class PolicyBinder:
    attachment_id = 'Policy'
    kind = None

    def __init__(self, owner, attachment_type, target_attribute='arn', target=None,
                 assign_sids=False, minimize=None):
        if owner.tree.manifest is not None:
            raise ValidationError(
                f"Cannot add a {self.kind} policy after the app has been synthesized", owner,
            )
        self.owner = owner
        self.tree = owner.tree
        self.attachment_type = attachment_type
        self.target = Reference(owner, target_attribute) if target is None else target
        self.assign_sids = assign_sids
        self.minimize = config.minimize_policies() if minimize is None else minimize
        self.document = None
        self.attachment = None
        self.rendered = None
        self.tree.binders.append(self)

    def __repr__(self):
        return f"<{type(self).__name__} {self.owner.path}>"

    @classmethod
    def of(cls, owner, attachment_type=None, **kwargs):
        """
        The binder for this owner, created on first use.
        """
        for binder in owner.tree.binders:
            if binder.owner is owner and binder.kind == cls.kind:
                return binder
        if attachment_type is None:
            raise ValidationError(
                f"{type(owner).__name__} has no {cls.kind} policy", owner,
            )
        return cls(owner, attachment_type, **kwargs)

    @property
    def finalized(self):
        return self.rendered is not None

    def attach(self):
        """
        Create the document and its attachment now, even if empty.

        Returns the attachment construct, which is what dependents wait on.
        """
        if self.document is None:
            self.document = PolicyDocument(assign_sids=self.assign_sids, minimize=self.minimize)
            self.attachment = PolicyAttachment(
                self.attachment_id,
                binder=self,
                resource_type=self.attachment_type,
                **opts(parent=self.owner),
            )
            pulumi.debug(f"Created {self.kind} policy {self.attachment.path}")
        return self.attachment

    def add_statement(self, statement):
        """
        Add a statement to the owner's document, creating it if needed.
        """
        if self.finalized:
            raise ValidationError(
                "Cannot add statements to a policy that has already been finalized",
                self.attachment,
            )
        attachment = self.attach()
        self.document.add_statements(statement)
        return attachment

    def depend_on_policy(self, consumer):
        """
        Make `consumer` wait for this policy, unless that would close a cycle.

        Returns True if a new edge was added.
        """
        if self.attachment is None:
            return False
        if consumer.stack is not self.attachment.stack:
            # Ordering across stacks can't be expressed
            pulumi.debug(
                f"Not ordering {consumer.path} after {self.attachment.path}: different stacks"
            )
            return False
        try:
            return self.tree.add_dependency(consumer, self.attachment, check_cycles=True)
        except AmbiguousDependencyCycle as exc:
            pulumi.debug(f"Skipping dependency edge: {exc}")
            return False

    def validate(self):
        raise NotImplementedError

    def finalize(self, resolver=None):
        """
        Validate, freeze and render the document. Safe to call repeatedly.
        """
        if self.rendered is not None:
            return self.rendered
        if self.document is None:
            return None
        errors = self.validate()
        if errors:
            raise InvalidPolicyStatement(errors, self.attachment)
        if resolver is None:
            resolver = CrossStackReferenceResolver.of(self.tree)
        self.document.freeze()
        self.rendered = self.document.to_document_json(resolver.context_for(self.attachment.stack))
        self.attachment.policy = self.rendered
        return self.rendered

    def render(self, context):
        """
        Render the (finalized) document again through another context.
        """
        if not self.finalized:
            raise ValidationError("Policy has not been finalized yet", self.attachment)
        return self.document.to_document_json(context)


class ResourcePolicyBinder(PolicyBinder):
    """
    The resource-based policy of a resource.
    """
    attachment_id = 'Policy'
    kind = 'resource'

    def add_to_resource_policy(self, statement):
        attachment = self.add_statement(statement)
        return AddToResourcePolicyResult(statement_added=True, policy_dependable=attachment)

    def validate(self):
        return self.document.validate_for_resource_policy()


class IdentityPolicyBinder(PolicyBinder):
    """
    The default inline policy of a role or user.
    """
    attachment_id = 'DefaultPolicy'
    kind = 'identity'

    def add_to_principal_policy(self, statement):
        attachment = self.add_statement(statement)
        return AddToPrincipalPolicyResult(statement_added=True, policy_dependable=attachment)

    def validate(self):
        return self.document.validate_for_identity_policy()


class TrustPolicyBinder(PolicyBinder):
    """
    Who may assume a role. Rendered into the role itself rather than a
    separate attachment, but validated and frozen like any other policy.
    """
    attachment_id = 'AssumeRolePolicy'
    kind = 'trust'

    def add_to_trust_policy(self, statement):
        return self.add_statement(statement)

    def validate(self):
        # Principals are required, resources are not
        return self.document.validate_for_resource_policy()
