"""
References between stacks.

A stack can't refer to another stack's resources directly. When a policy
rendered for stack B mentions a value produced in stack A, the value is
exported from A as a named output, B gets one remote-state data source
reading A's outputs, and the reference is replaced by a lookup into that
remote state.

Dependency edges can't cross stacks at all, so ordering between a policy in
one stack and its consumers in another is best effort only.
"""
import re

import pulumi

from cutils.component import component, opts
from cutils.deferred import Lazy, ResolveContext, resolve_value, leaves_of

from .errors import UnresolvableCrossStackReference

__all__ = (
    'StackOutput', 'RemoteState', 'CrossStackRef', 'CrossStackContext',
    'CrossStackReferenceResolver', 'stack_of',
)


@component('iamsynth:crossstack:StackOutput', resource_type='output')
def StackOutput(self, name, *, value, __opts__):
    """
    A value a stack exports for other stacks to read.
    """
    return {
        'value': value,
        # The value as seen from inside the producing stack
        'expression': None,
    }


@component('iamsynth:crossstack:RemoteState', resource_type='remote_state')
def RemoteState(self, name, *, producer, __opts__):
    """
    A read of another stack's outputs.
    """
    return {'producer': producer}


class CrossStackRef:
    def __init__(self, producer, consumer, output, remote_state):
        self.producer = producer
        self.consumer = consumer
        self.output = output
        self.remote_state = remote_state

    def __repr__(self):
        return f"<CrossStackRef {self.producer.name} -> {self.consumer.name}: {self.output_key}>"

    @property
    def output_key(self):
        return self.output.name

    @property
    def remote_state_id(self):
        return self.remote_state.name

    @property
    def expression(self):
        return lookup_expression(self.remote_state_id, self.output_key)


def lookup_expression(remote_state_id, output_key):
    return f"${{remote_state.{remote_state_id}.outputs.{output_key}}}"


def stack_of(thing):
    """
    The stack a construct (or a deferred value's owner) lives in, if any.
    """
    tree = getattr(thing, 'tree', None)
    if tree is None:
        return None
    return tree.stack_of(thing)


def output_key(leaf):
    if isinstance(leaf, Lazy):
        suffix = leaf.key
    else:
        suffix = f"{leaf.construct.resource_type}-{leaf.attribute}"
    raw = f"cross-stack-output-{leaf.owner.logical_id}-{suffix}"
    return re.sub(r'[^A-Za-z0-9_-]', '_', raw)


class CrossStackContext(ResolveContext):
    """
    Resolves values for one stack, redirecting anything produced elsewhere
    through that stack's remote states.
    """
    def __init__(self, stack, resolver):
        super().__init__(stack)
        self.resolver = resolver

    def reference(self, ref):
        lookup = self.resolver.lookup(ref, self.stack)
        if lookup is None:
            return super().reference(ref)
        return lookup

    def lazy(self, lazy):
        lookup = self.resolver.lookup(lazy, self.stack)
        if lookup is None:
            return super().lazy(lazy)
        return lookup

    def lookup(self, lookup):
        if self.stack is not None:
            self.stack.lookups[lookup.name] = lookup.table
        return super().lookup(lookup)


class CrossStackReferenceResolver:
    """
    Keeps track of every value exported between stacks of one tree.
    """
    def __init__(self, tree):
        self.tree = tree
        self.refs = []
        self._refs = {}
        # (producer path, value identity) -> output
        self._exports = {}

    @classmethod
    def of(cls, tree):
        if tree.resolver is None:
            tree.resolver = cls(tree)
        return tree.resolver

    def context_for(self, stack):
        return CrossStackContext(stack, self)

    @staticmethod
    def is_cross_stack(a, b):
        """
        True if both things live in stacks, and not the same one.
        """
        sa, sb = stack_of(a), stack_of(b)
        return sa is not None and sb is not None and sa is not sb

    def lookup(self, leaf, consumer):
        """
        The expression `consumer` should use for `leaf`, or None if the value
        can be used directly.
        """
        owner = leaf.owner
        if consumer is None or owner is None:
            return None
        producer = stack_of(owner)
        if producer is None:
            raise UnresolvableCrossStackReference(
                f"{leaf!r} is used in stack {consumer.name!r} but is not defined in any stack",
                owner,
            )
        if producer is consumer:
            return None
        return self.resolve(leaf, producer, consumer).expression

    def resolve(self, leaf, producer, consumer):
        if leaf.identity is None:
            raise UnresolvableCrossStackReference(
                f"{leaf!r} from stack {producer.name!r} has no stable identity "
                f"and cannot be used in stack {consumer.name!r}",
                leaf.owner,
            )
        output = self._export(leaf, producer, consumer)
        remote_state = self._remote_state(producer, consumer)
        key = (producer.path, consumer.path, leaf.identity)
        if key not in self._refs:
            ref = CrossStackRef(producer, consumer, output, remote_state)
            self._refs[key] = ref
            self.refs.append(ref)
        return self._refs[key]

    def _export(self, leaf, producer, consumer):
        exported = self._exports.get((producer.path, leaf.identity))
        if exported is not None:
            return exported
        key = output_key(leaf)
        if key in producer.outputs:
            raise UnresolvableCrossStackReference(
                f"{leaf!r} and {producer.outputs[key].value!r} would both be exported "
                f"from stack {producer.name!r} as {key}",
                leaf.owner,
            )
        if isinstance(leaf, Lazy):
            for inner in leaves_of(leaf.func()):
                inner_stack = stack_of(inner.owner) if inner.owner is not None else None
                if inner_stack is not None and inner_stack is not producer:
                    raise UnresolvableCrossStackReference(
                        f"{leaf!r} from stack {producer.name!r} depends on a value "
                        f"produced in stack {inner_stack.name!r}",
                        leaf.owner,
                    )
        output = StackOutput(key, value=leaf, **opts(parent=producer))
        producer.outputs[key] = output
        self._exports[(producer.path, leaf.identity)] = output
        output.expression = resolve_value(leaf, self.context_for(producer))
        pulumi.debug(f"Exporting {key} from {producer.name} for {consumer.name}")
        return output

    def _remote_state(self, producer, consumer):
        if producer.path not in consumer.remote_states:
            consumer.remote_states[producer.path] = RemoteState(
                f"cross-stack-reference-input-{producer.name}",
                producer=producer,
                **opts(parent=consumer),
            )
            pulumi.debug(f"Stack {consumer.name} now reads outputs of {producer.name}")
        return consumer.remote_states[producer.path]

    def refs_between(self, producer, consumer):
        return [
            ref for ref in self.refs
            if ref.producer is producer and ref.consumer is consumer
        ]
