class BaseNatoursException(AssertionError):  # `AssertionError` so that API layers can catch user errors in one place
    pass


class InvalidQueryError(BaseNatoursException):
    """ Invalid input provided by the User """

    def __init__(self, err: str):
        super(InvalidQueryError, self).__init__('Query error: {err}'.format(err=err))


class DisabledError(InvalidQueryError):
    """ The feature is disabled """


class InvalidColumnError(BaseNatoursException):
    """ Query mentioned an invalid column name """

    def __init__(self, model: str, column_name: str, where: str):
        self.model = model
        self.column_name = column_name
        self.where = where

        super(InvalidColumnError, self).__init__(
            'Invalid column "{column_name}" for "{model}" specified in {where}'.format(
                column_name=column_name,
                model=model,
                where=where)
        )


class ValidationError(BaseNatoursException):
    """ A model refused to accept a value """

    def __init__(self, model: str, field: str, err: str):
        self.model = model
        self.field = field

        super(ValidationError, self).__init__(
            'Validation failed for "{model}.{field}": {err}'.format(model=model, field=field, err=err)
        )


class ParentNotFoundError(BaseNatoursException):
    """ A summary could not be written: the parent record does not exist """

    def __init__(self, model: str, parent_id):
        self.model = model
        self.parent_id = parent_id

        super(ParentNotFoundError, self).__init__(
            '"{model}" #{parent_id} not found'.format(model=model, parent_id=parent_id)
        )


class LifecycleHookError(BaseNatoursException):
    """ A post-mutation hook has failed.

        The mutation itself has already been committed and is not rolled back.
        The original error is available as `__cause__`.
    """

    def __init__(self, event, document):
        self.event = event
        self.document = document

        super(LifecycleHookError, self).__init__(
            'Lifecycle hook failed after {event} on {document!r}'.format(event=event.name, document=document)
        )

