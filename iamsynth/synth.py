"""
The finalize pass.

Runs once after the whole tree is built: every policy binder is validated,
frozen and rendered in construction order, cross-stack references are
materialized on the way, and the result is collected into a manifest.
"""
import pulumi

from cutils.deferred import resolve_value

from .crossstack import CrossStackReferenceResolver

__all__ = 'synthesize', 'finalize_policies'


def finalize_policies(tree):
    """
    Finalize every binder in the tree, returning the ones with a policy.
    """
    resolver = CrossStackReferenceResolver.of(tree)
    finalized = []
    # Binders may be created while rendering (lazy values), so don't snapshot
    index = 0
    while index < len(tree.binders):
        binder = tree.binders[index]
        if binder.finalize(resolver) is not None:
            finalized.append(binder)
        index += 1
    return finalized


def synthesize(app):
    """
    Finalize the app and describe every stack in it.

    {stack name: {
        'policies': {attachment path: {'type', 'target', 'document'}},
        'dependencies': [(from path, to path), ...],
        'outputs': {output key: expression},
        'remote_states': {remote state name: producing stack name},
        'lookups': {lookup table name: {key: value}},
    }}

    Calling this again returns the same manifest. Policies can't be added
    afterwards.
    """
    tree = app.tree
    if tree.manifest is not None:
        return tree.manifest

    finalized = finalize_policies(tree)
    resolver = CrossStackReferenceResolver.of(tree)

    manifest = {}
    for stack in app.stacks:
        manifest[stack.name] = {
            'policies': {},
            'dependencies': [],
            'outputs': {},
            'remote_states': {},
            'lookups': {},
        }

    for binder in finalized:
        stack = binder.attachment.stack
        context = resolver.context_for(stack)
        manifest[stack.name]['policies'][binder.attachment.path] = {
            'type': binder.attachment_type,
            'target': resolve_value(binder.target, context),
            'document': binder.rendered,
        }

    for frm, to in tree.edges:
        stack = tree.stack_of(frm)
        if stack is not None:
            manifest[stack.name]['dependencies'].append((frm, to))

    for stack in app.stacks:
        entry = manifest[stack.name]
        for key, output in stack.outputs.items():
            entry['outputs'][key] = output.expression
        for remote_state in stack.remote_states.values():
            entry['remote_states'][remote_state.name] = remote_state.producer.name
        entry['lookups'].update(stack.lookups)

    pulumi.info(
        f"Synthesized {len(finalized)} policies in {len(manifest)} stacks, "
        f"{len(resolver.refs)} cross-stack references"
    )
    tree.manifest = manifest
    return manifest
